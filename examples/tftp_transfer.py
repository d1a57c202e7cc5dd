#!/usr/bin/env python3
"""
TFTP File Transfer Example

Fetches, uploads and serves files with our TFTP implementation.
Shows how TFTP moves a file in lock-step 512-byte blocks:
- One block in flight at a time
- A short final block marks the end of the file
- Lost packets are retransmitted with exponential backoff

    python tftp_transfer.py serve --root /srv/tftp --port 6969
    python tftp_transfer.py get pxelinux.0 --host 127.0.0.1 --port 6969
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tftp import TFTPConfig, TFTPServer, ReadOnlyFileServer, get, put
import asyncio
import hashlib
import logging
import time


def get_file(host: str, port: int, filename: str, output: str, config: TFTPConfig) -> bool:
    """Download ``filename`` from the server and save it to ``output``."""
    print(f"Fetching {filename} from {host}:{port}")
    start_time = time.time()

    result = asyncio.run(get(host, port, filename, config=config))
    if not result.success:
        print(f"Transfer failed: {result.error}")
        return False

    with open(output, 'wb') as f:
        f.write(result.data)

    elapsed = time.time() - start_time
    print(f"Saved {len(result.data)} bytes to {output}")
    print(f"MD5: {hashlib.md5(result.data).hexdigest()}")
    print(f"Time: {elapsed:.2f}s")
    return True


def put_file(host: str, port: int, filepath: str, remote_name: str, config: TFTPConfig) -> bool:
    """Upload a local file to the server as ``remote_name``."""
    with open(filepath, 'rb') as f:
        content = f.read()

    print(f"Sending {filepath} as {remote_name} to {host}:{port}")
    print(f"Size: {len(content)} bytes")
    start_time = time.time()

    success, error = asyncio.run(put(host, port, remote_name, content, config=config))
    if not success:
        print(f"Transfer failed: {error}")
        return False

    print(f"Transfer complete!")
    print(f"Time: {time.time() - start_time:.2f}s")
    return True


async def serve(root: str, config: TFTPConfig):
    """Serve files from ``root`` until interrupted."""
    server = TFTPServer(ReadOnlyFileServer(root), config)
    await server.start()
    print(f"TFTP server listening on {server.address[0]}:{server.address[1]}")
    print(f"Serving files from: {os.path.abspath(root)}")
    try:
        await server.serve_forever()
    finally:
        server.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="TFTP File Transfer")
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    parser.add_argument('--timeout', type=float, default=1.5,
                        help='Initial retransmission timeout in seconds')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Get command
    get_parser = subparsers.add_parser('get', help='Download a file')
    get_parser.add_argument('filename', help='Remote file name')
    get_parser.add_argument('--output', help='Local file (default: remote basename)')
    get_parser.add_argument('--host', default='127.0.0.1', help='Server host')
    get_parser.add_argument('--port', type=int, default=69, help='Server port')

    # Put command
    put_parser = subparsers.add_parser('put', help='Upload a file')
    put_parser.add_argument('file', help='Local file to send')
    put_parser.add_argument('--name', help='Remote file name (default: local basename)')
    put_parser.add_argument('--host', default='127.0.0.1', help='Server host')
    put_parser.add_argument('--port', type=int, default=69, help='Server port')

    # Serve command
    serve_parser = subparsers.add_parser('serve', help='Serve a directory read-only')
    serve_parser.add_argument('--root', default='.', help='Directory to serve')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Address to bind')
    serve_parser.add_argument('--port', type=int, default=69, help='Port to listen on')

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = TFTPConfig(base_timeout=args.timeout)

    if args.command == 'get':
        output = args.output or os.path.basename(args.filename)
        ok = get_file(args.host, args.port, args.filename, output, config)
        sys.exit(0 if ok else 1)
    elif args.command == 'put':
        name = args.name or os.path.basename(args.file)
        ok = put_file(args.host, args.port, args.file, name, config)
        sys.exit(0 if ok else 1)
    elif args.command == 'serve':
        config.host = args.host
        config.port = args.port
        try:
            asyncio.run(serve(args.root, config))
        except KeyboardInterrupt:
            print("\nShutting down...")
    else:
        parser.print_help()
