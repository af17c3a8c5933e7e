"""
ABX Selector - command line front end.

Plays two or more audio files in sync with exactly one audible at a time.

Commands (one per line on stdin):
    n / Enter   next source
    <number>    select source (1-based)
    p           play / pause
    q           quit
"""
import argparse
import random
import sys
import threading

from core.config_manager import ConfigManager
from core.errors import AbxError, SelectionError
from core.selector import AudioSelector
from utils.error_handler import log_exception
from utils.logger import get_logger

logger = get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="abx", description="CLI utility to ABX audio files.")
    parser.add_argument("files", nargs='+', help="Audio files to compare (at least two)")
    parser.add_argument("--shuffle", action="store_true", default=None,
                        help="Randomize source order and reveal it on exit")
    parser.add_argument("--seed", type=int, default=None, help="Seed for --shuffle")
    parser.add_argument("--config", default="config/settings.json", help="Settings JSON file")
    parser.add_argument("--device", type=int, default=None, help="Output device id")
    parser.add_argument("--blocksize", type=int, default=None, help="Audio block size in frames")
    args = parser.parse_args(argv)
    if len(args.files) < 2:
        parser.error("need at least two files to compare")
    return args


def build_order(files, shuffle: bool, seed=None):
    order = list(range(len(files)))
    if shuffle:
        random.Random(seed).shuffle(order)
    return order


def handle_command(selector: AudioSelector, line: str) -> bool:
    """Apply one command line. Returns False when the user asked to quit."""
    cmd = line.strip().lower()
    if cmd == 'q':
        return False
    try:
        if cmd in ('', 'n'):
            selector.next_source()
        elif cmd == 'p':
            selector.toggle()
        elif cmd.isdigit():
            selector.select_source(int(cmd) - 1)
        else:
            print(f"unknown command: {cmd!r}", file=sys.stderr)
    except SelectionError as e:
        log_exception(e, "Selection", level="warning", include_traceback=False)
    except AbxError as e:
        log_exception(e, f"Command {cmd!r}", include_traceback=False)
    return True


def _read_commands(selector: AudioSelector, quit_event: threading.Event):
    for line in sys.stdin:
        if not handle_command(selector, line):
            break
    quit_event.set()


def main(argv=None) -> int:
    args = parse_args(argv)

    ConfigManager.reset_instance()
    config = ConfigManager.get_instance(args.config)
    overrides = {}
    if args.device is not None:
        overrides["device_id"] = args.device
    if args.blocksize is not None:
        overrides["blocksize"] = args.blocksize
    if overrides:
        config.merge_settings({"audio": overrides})
    shuffle = config.get("playback.shuffle", False) if args.shuffle is None else args.shuffle

    order = build_order(args.files, shuffle, args.seed)
    selector = AudioSelector(config)
    try:
        for i in order:
            selector.add_source(args.files[i])
        selector.start_watching().play()
    except AbxError as e:
        log_exception(e, "Starting playback", include_traceback=False)
        selector.close()
        return 1

    def show(percent):
        sys.stdout.write(f"\r[{selector.selected + 1}/{len(order)}] {percent:5.1f}%")
        sys.stdout.flush()

    selector.start_progress_poller(show)

    quit_event = threading.Event()
    threading.Thread(target=_read_commands, args=(selector, quit_event), name="abx-input", daemon=True).start()
    try:
        while not quit_event.is_set() and not selector.wait(timeout=0.2):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        selector.close()
        print()

    if shuffle:
        for slot, i in enumerate(order):
            print(f"  {slot + 1}: {args.files[i]}")

    if selector.error is not None:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
