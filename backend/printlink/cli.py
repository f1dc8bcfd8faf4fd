"""
PrintLink command line.

Usage:
    printlink 192.168.1.40 --protocol act test
    printlink 192.168.1.50 --protocol octoprint --api-key KEY ls
    printlink 192.168.1.60 --protocol anycubicHTTP print cube.pwmx
    printlink 192.168.1.40 --protocol act rm cube.pwmx
    printlink 192.168.1.40 --protocol act status
    printlink 192.168.1.50 --protocol octoprint --api-key KEY job

Exit status: 0 success, 1 printer error, 2 usage error.
"""

import argparse
import logging
import sys
from typing import List, Optional

from printlink.client import PrinterClient
from printlink.core.config import Settings
from printlink.core.errors import InvalidTarget, PrinterError
from printlink.models import FileListing, JobProgress, PrinterProtocol, PrinterTarget

log = logging.getLogger("printlink.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="printlink", description="Talk to a networked 3D printer")
    parser.add_argument("address", help="Printer IPv4 address")
    parser.add_argument(
        "--protocol", required=True,
        choices=[p.value for p in PrinterProtocol],
        help="Printer control protocol",
    )
    parser.add_argument("--port", default=None, help="Port (default: protocol default)")
    parser.add_argument("--api-key", default=None, help="API key (OctoPrint)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("test", help="Test the connection")
    sub.add_parser("ls", help="List files stored on the printer")
    p = sub.add_parser("print", help="Start printing a stored file")
    p.add_argument("filename")
    p = sub.add_parser("rm", help="Delete a stored file")
    p.add_argument("filename")
    sub.add_parser("status", help="Show printer state")
    sub.add_parser("job", help="Show progress of the current print")
    sub.add_parser("pause", help="Pause the current print")
    sub.add_parser("resume", help="Resume a paused print")
    sub.add_parser("cancel", help="Cancel the current print")
    return parser


def _print_listing(listing: FileListing):
    if not listing:
        print("(no files)")
        return
    for record in sorted(listing, key=lambda r: r.filename.lower()):
        size = f"{record.size:>12}" if record.size is not None else f"{'-':>12}"
        modified = record.modified.strftime("%Y-%m-%d %H:%M") if record.modified else ""
        print(f"{size}  {modified:16}  {record.filename}")


def _duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m" if hours else f"{minutes}m {secs:02d}s"


def _print_job(job: JobProgress):
    print(f"State:    {job.state.value} ({job.state_text})")
    if job.filename:
        print(f"File:     {job.filename}")
    if job.completion is not None:
        print(f"Progress: {job.completion:.0f}%")
    if job.print_time is not None:
        print(f"Elapsed:  {_duration(job.print_time)}")
    if job.print_time_left is not None:
        print(f"Left:     {_duration(job.print_time_left)}")


def run(args: argparse.Namespace, client: PrinterClient, target: PrinterTarget) -> int:
    if args.command == "test":
        result = client.test_connection(target)
        if result.reachable:
            print(f"✅ {target} reachable" + (f": {result.detail}" if result.detail else ""))
            return 0
        print(f"❌ {target} unreachable: [{result.error.error_code}] {result.error.detail}")
        return 1

    if args.command == "ls":
        _print_listing(client.list_files(target))
    elif args.command == "print":
        client.start_print(target, args.filename)
        print(f"✅ Started {args.filename}")
    elif args.command == "rm":
        client.delete_file(target, args.filename)
        print(f"✅ Deleted {args.filename}")
    elif args.command == "status":
        report = client.get_status(target)
        print(f"State:    {report.state.value} ({report.state_text})")
        if report.printer_name:
            print(f"Printer:  {report.printer_name}")
        if report.firmware_version:
            print(f"Firmware: {report.firmware_version}")
        if report.tool_temperature is not None:
            print(f"Nozzle:   {report.tool_temperature:.1f}°C / {report.tool_target or 0:.1f}°C")
        if report.bed_temperature is not None:
            print(f"Bed:      {report.bed_temperature:.1f}°C / {report.bed_target or 0:.1f}°C")
    elif args.command == "job":
        _print_job(client.get_job_status(target))
    else:
        method = {"pause": client.pause_print, "resume": client.resume_print, "cancel": client.cancel_print}
        result = method[args.command](target)
        print(f"✅ {result.action} accepted")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        # Connection tests may run without the OctoPrint key
        target = PrinterTarget.from_config(
            args.address, args.port, args.protocol, args.api_key,
            require_api_key=args.command != "test",
        )
    except InvalidTarget as e:
        parser.error(e.detail)

    settings = Settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    with PrinterClient(settings) as client:
        try:
            return run(args, client, target)
        except PrinterError as e:
            log.debug(f"[cli] {args.command} failed", exc_info=True)
            print(f"❌ [{e.error_code}] {e.detail}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
