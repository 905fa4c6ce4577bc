"""
Entry point for DuoChat.
This module provides a command-line interface to start the server.
"""

import argparse

from DuoChat.config import config
from DuoChat.start import api, server


def parse():
    parser = argparse.ArgumentParser(prog='DuoChat', description='DuoChat starter')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    # websocket gateway + HTTP api in one process
    server_parser = subparsers.add_parser('server', help='Startup SERVER (ws + api)')
    server_parser.add_argument('--host', default=config.DEFAULT_HOST,
                               help=f'listening address (default: {config.DEFAULT_HOST})')
    server_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                               help=f'ws port, api uses port + 1 (default: {config.DEFAULT_SERVER_PORT})')
    server_parser.add_argument('--db', default=None, help='SQLite database file')

    srv_parser = subparsers.add_parser('srv-only', help='Startup server (ws server)')
    srv_parser.add_argument('--host', default=config.DEFAULT_HOST, help='listening address')
    srv_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                            help=f'server port (default: {config.DEFAULT_SERVER_PORT})')
    srv_parser.add_argument('--db', default=None, help='SQLite database file')

    api_parser = subparsers.add_parser('api-only', help='Startup api')
    api_parser.add_argument('--host', default=config.DEFAULT_HOST, help='listening address')
    api_parser.add_argument('--port', type=int, default=config.DEFAULT_API_PORT,
                            help=f'api server port (default: {config.DEFAULT_API_PORT})')
    api_parser.add_argument('--db', default=None, help='SQLite database file')

    return parser.parse_args()


def main():
    args = parse()

    if args.command == 'server':
        server.server(port=args.port, host=args.host, db_path=args.db)
    elif args.command == 'srv-only':
        server.server(port=args.port, srv_only=True, host=args.host, db_path=args.db)
    elif args.command == 'api-only':
        api.api(port=args.port, host=args.host, db_path=args.db)
    else:
        raise Exception('Unknown command')


if __name__ == '__main__':
    main()
