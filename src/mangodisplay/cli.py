"""Command-line entry point."""

from __future__ import annotations

import argparse
import logging
import sys

from .errors import MangoDisplayError, PreviewApplyFailed
from .session import SessionController
from .tasks import BackgroundRunner, call_directly
from .utils import VERSION, AppSettings, load_app_settings, parse_bool, save_app_settings, settings_path
from .wlr_randr import WlrRandr

log = logging.getLogger(__name__)


def _bool_arg(value: str) -> bool:
    try:
        return parse_bool(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mangodisplay",
        description="Monitor layout tool for the mango compositor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Save monitor rules somewhere else
  mangodisplay --set-monitors-path ~/.config/mango/outputs.conf

  # Add source= to config.conf automatically on save
  mangodisplay --auto-append-source yes

  # Show detected outputs and the rules that would be written
  mangodisplay --list --print-rules
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    settings = parser.add_argument_group("settings (saved to settings.json, then exit)")
    settings.add_argument("--set-monitors-path", metavar="PATH",
                          help="file that receives the monitorrule= lines")
    settings.add_argument("--set-config-path", metavar="PATH",
                          help="mango config file that sources the monitors file")
    settings.add_argument("--auto-append-source", metavar="BOOL", type=_bool_arg,
                          help="add a source= line to the config file on save (yes/no)")

    session = parser.add_argument_group("session")
    session.add_argument("--list", "-l", action="store_true",
                         help="list detected and planned outputs")
    session.add_argument("--print-rules", action="store_true",
                         help="print the rule block that --save would write")
    session.add_argument("--preview", action="store_true",
                         help="apply the current layout live with wlr-randr")
    session.add_argument("--save", action="store_true",
                         help="write the current layout to the monitors file")

    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def _update_settings(args: argparse.Namespace, settings: AppSettings) -> bool:
    """Apply the setter flags. Returns True if any was given."""
    changed = False
    if args.set_monitors_path is not None:
        settings.monitors_path = args.set_monitors_path
        changed = True
    if args.set_config_path is not None:
        settings.config_path = args.set_config_path
        changed = True
    if args.auto_append_source is not None:
        settings.auto_append_source = args.auto_append_source
        changed = True
    return changed


def _print_outputs(controller: SessionController) -> None:
    session = controller.session
    if not len(session):
        print("No outputs found")
        return
    print(f"Found {len(session)} outputs:")
    for out in session.sorted_outputs():
        status = "enabled" if out.enabled else "disabled"
        notes = []
        if not out.connected:
            notes.append("planned")
        if out.mode_unknown:
            notes.append("mode unknown")
        extra = f" ({', '.join(notes)})" if notes else ""
        print(f"  {out.name}: {out.width}x{out.height}@{out.refresh_rate:.3f}Hz "
              f"at ({out.x}, {out.y}) scale {out.scale:g} "
              f"transform {out.transform.wayland_name} [{status}]{extra}")


def _run_session(args: argparse.Namespace, settings: AppSettings) -> None:
    controller = SessionController(
        settings,
        WlrRandr(timeout=settings.query_timeout),
        BackgroundRunner(dispatch=call_directly),
    )
    controller.start_session()
    for err in controller.load_errors:
        print(f"Warning: {settings.monitors_file}: {err}", file=sys.stderr)

    if args.list:
        _print_outputs(controller)
    if args.print_rules:
        sys.stdout.write(controller.rules_text())
    if args.preview:
        controller.preview()
        print("Preview applied")
    if args.save:
        if controller.save():
            print(f"Saved to {settings.monitors_file}")
        else:
            print(f"{settings.monitors_file} is already up to date")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [mangodisplay] %(levelname)s %(message)s",
    )

    settings = load_app_settings()
    log.debug("Using %s", settings)
    try:
        if _update_settings(args, settings):
            save_app_settings(settings)
            print(f"Settings saved to {settings_path()}")
            return 0

        if not (args.list or args.print_rules or args.preview or args.save):
            parser.print_help()
            return 0

        _run_session(args, settings)
    except PreviewApplyFailed as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.diagnostic:
            print(e.diagnostic, file=sys.stderr)
        return 1
    except (MangoDisplayError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
