import argparse
import asyncio
import logging
import sys

from .client import Client
from .config import DEFAULT_TIMEOUT, PeerConfig
from .errors import P2PError

logger = logging.getLogger('p2pshare')


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='p2pshare', description='Tracker-indexed P2P file sharing client')
    parser.add_argument('--tracker', default='127.0.0.1', help='tracker address as HOST[:PORT]')
    parser.add_argument('--share', required=True, help='directory to index and serve')
    parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                        help='seconds before a blocked socket operation fails (0 disables)')
    parser.add_argument('--max-size', type=int, default=None,
                        help='refuse transfers declared larger than this many bytes')
    parser.add_argument('-v', '--verbose', action='store_true')

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('serve', help='index the share directory and serve it until interrupted')
    commands.add_parser('list', help='list the files known to the tracker')
    get = commands.add_parser('get', help='download a file into the share directory')
    get.add_argument('filename')
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    config = PeerConfig.from_tracker_url(
        args.share, args.tracker,
        timeout=args.timeout or None,
        max_transfer_size=args.max_size,
    )
    client = Client(config)
    status = 0

    try:
        await client.start(serve=args.command == 'serve')
        if args.command == 'list':
            entries = await client.list_files()
            for i, entry in enumerate(entries, start=1):
                print(f'file [{i:2d}]: {entry.name:>20} [size: {entry.size:>10}]')
        elif args.command == 'get':
            result = await client.download(args.filename)
            print(f'{result.path} ({result.received} bytes)')
        else:
            logger.info('Ready, serving files. Press Ctrl+C to stop...')
            await client.server.serve_forever()
    except P2PError as e:
        logger.error(f'{e}')
        status = 1
    finally:
        try:
            await client.stop()
        except P2PError as e:
            logger.error(f'Failed to leave the tracker cleanly: {e}')
            status = 1
    return status


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info('Stopped by user')


if __name__ == '__main__':
    main()
