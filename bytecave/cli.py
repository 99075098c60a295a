#!/usr/bin/env python3
"""
ByteCave CLI

Command-line interface for storing and retrieving content on the ByteCave
network.

Commands:
- store: Store a file, print its CID
- retrieve: Retrieve a CID to a file or stdout
- peers: List known and connected peers
- health: Query a peer's health
"""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .client import ByteCaveClient
from .core.config import ClientConfig
from .core.signing import Ed25519Signer, signer_from_env
from .hashd import create_hashd_url


class InterceptHandler(logging.Handler):
    """Route stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(verbose: bool = False):
    level = "DEBUG" if verbose else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level)
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


class ByteCaveCLI:
    """CLI for ByteCave storage operations."""

    def build_config(self, args) -> ClientConfig:
        """Environment configuration overridden by command-line flags."""
        config = ClientConfig.from_env()
        updates = {}
        if args.relay:
            updates["relay_peers"] = args.relay
        if args.direct:
            updates["direct_node_addrs"] = args.direct
        if args.relay_http:
            updates["relay_http_url"] = args.relay_http
        if args.relay_ws:
            updates["relay_ws_url"] = args.relay_ws
        if args.app_id:
            updates["app_id"] = args.app_id
        return config.model_copy(update=updates)

    async def store(self, client: ByteCaveClient, args) -> int:
        path = Path(args.file)
        if not path.is_file():
            logger.error("File not found: {}", path)
            return 1

        if args.key_path:
            signer = Ed25519Signer.load_or_generate(Path(args.key_path))
        else:
            signer = signer_from_env()
        result = await client.store(path.read_bytes(), mime_type=args.mime_type, signer=signer)

        if not result.success:
            logger.error("Store failed: {}", result.error)
            for failure in result.failures:
                logger.error("  {}", failure)
            return 1

        print(result.cid)
        logger.info("Stored on {} as {}", result.peer_id, create_hashd_url(result.cid, args.mime_type))
        return 0

    async def retrieve(self, client: ByteCaveClient, args) -> int:
        result = await client.retrieve(args.cid)
        if not result.success:
            logger.error("Retrieve failed: {}", result.error)
            return 1

        if args.output:
            Path(args.output).write_bytes(result.data)
            logger.info("Wrote {} bytes ({}) to {}", len(result.data), result.mime_type, args.output)
        else:
            sys.stdout.buffer.write(result.data)
            sys.stdout.buffer.flush()
        return 0

    async def peers(self, client: ByteCaveClient, args) -> int:
        peers = client.get_peers()
        if args.json:
            print(json.dumps([p.to_dict() for p in peers], indent=2))
            return 0

        print(f"{'Peer ID':<20} {'State':<13} {'Registered':<11} {'Content Types'}")
        print("-" * 70)
        for peer in peers:
            content_types = peer.content_types if isinstance(peer.content_types, str) else ",".join(peer.content_types)
            print(f"{peer.peer_id[:16] + '...':<20} {peer.state.value:<13} {str(bool(peer.is_registered)):<11} {content_types}")
        print(f"\nConnected: {client.get_connected_peer_count()} / Known: {len(peers)}")
        return 0

    async def health(self, client: ByteCaveClient, args) -> int:
        health = await client.get_node_health(args.peer_id)
        if health is None:
            logger.error("No health response from {}", args.peer_id)
            return 1
        print(json.dumps(health.to_dict(), indent=2))
        return 0

    def create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog="bytecave",
            description="ByteCave decentralized storage client",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument("--relay", action="append", help="Relay multiaddr (repeatable)")
        parser.add_argument("--direct", action="append", help="Direct storage node multiaddr (repeatable)")
        parser.add_argument("--relay-http", help="Relay HTTP base URL for discovery")
        parser.add_argument("--relay-ws", help="Relay websocket URL for storage")
        parser.add_argument("--app-id", help="Application id")
        parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

        subparsers = parser.add_subparsers(dest="command", help="Commands")

        store_parser = subparsers.add_parser("store", help="Store a file")
        store_parser.add_argument("file", help="File to store")
        store_parser.add_argument("--mime-type", help="Media type of the file")
        store_parser.add_argument("--key-path", help="Ed25519 signing key (created if missing)")

        retrieve_parser = subparsers.add_parser("retrieve", help="Retrieve a CID")
        retrieve_parser.add_argument("cid", help="Content id")
        retrieve_parser.add_argument("-o", "--output", help="Output file (stdout if omitted)")

        peers_parser = subparsers.add_parser("peers", help="List peers")
        peers_parser.add_argument("--json", action="store_true", help="JSON output")

        health_parser = subparsers.add_parser("health", help="Query peer health")
        health_parser.add_argument("peer_id", help="Peer id")

        return parser

    async def run_async(self, args) -> int:
        """Run CLI command asynchronously."""
        commands = {
            "store": self.store,
            "retrieve": self.retrieve,
            "peers": self.peers,
            "health": self.health,
        }
        command = commands.get(args.command)
        if command is None:
            logger.error("Unknown command. Use --help for usage.")
            return 1

        client = ByteCaveClient(self.build_config(args))
        try:
            await client.start()
        except Exception as e:
            logger.error("Failed to start client: {}", e)
            return 1

        try:
            return await command(client, args)
        finally:
            await client.stop()

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run CLI (entry point)."""
        parser = self.create_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 1

        configure_logging(args.verbose)
        return asyncio.run(self.run_async(args))


def main():
    """CLI entry point."""
    cli = ByteCaveCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
