"""Print MD5 digests of files and strings, in the style of md5sum."""
import argparse
import logging
import os
import sys

from md5 import hexdigest

logger = logging.getLogger(__name__)


def read_input(name):
    if name == '-':
        return sys.stdin.buffer.read()
    with open(name, 'rb') as f:
        return f.read()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Compute MD5 (RFC 1321) message digests")
    parser.add_argument("files", nargs="*", help="Files to digest ('-' for standard input)")
    parser.add_argument("-s", "--string", action="append", default=[],
                        help="Digest the UTF-8 bytes of STRING (repeatable)")
    parser.add_argument("-r", "--rounds", type=int, choices=[1, 2, 3, 4], default=4,
                        help="Rounds per block; anything below 4 is not MD5")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if args.rounds != 4:
        logger.warning("using %d of 4 rounds, output is not an MD5 digest", args.rounds)

    status = 0
    for text in args.string:
        # argv bytes that are not UTF-8 arrive as surrogate escapes
        data = os.fsencode(text)
        shown = data.decode("utf-8", "replace")
        print(f'{hexdigest(data, args.rounds)}  "{shown}"')

    files = args.files
    if not files and not args.string:
        files = ['-']
    for name in files:
        try:
            data = read_input(name)
        except OSError as e:
            logger.error("%s: %s", name, e.strerror or e)
            status = 1
            continue
        logger.debug("read %d bytes from %s", len(data), name)
        print(f'{hexdigest(data, args.rounds)}  {name}')
    return status


if __name__ == "__main__":
    sys.exit(main())
