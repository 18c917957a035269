#!/usr/bin/env python3
"""
govreg command line.

Local commands read the deployment record and journal under GOVREG_DATA_DIR.
Mutations (param set, authorize, transfer) go through the running service so
the live registry and its journal stay the single writer.
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional

import httpx

from . import config
from .accounts import generate_validator_accounts, read_private_key
from .client import RegistryAuth, RegistryClient
from .deploy import deploy, load_genesis, load_registry, principal_for_key, read_record
from .errors import RegistryError
from .keys import key_id, resolve_key
from .log import configure_logging
from .witness import EventJournal


def _emit(payload: Any, output_format: str) -> None:
    if output_format == "json":
        print(json.dumps(payload, sort_keys=True))
        return
    print(payload)


def _fail(message: str, *, code: int = 1) -> None:
    print(f"error: {message}", file=sys.stderr)
    raise SystemExit(code)


def _remote(args: argparse.Namespace) -> RegistryClient:
    client = RegistryClient(args.url, auth=RegistryAuth())
    client.login(read_private_key(args.key))
    return client


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="govreg", description="Governance registry tooling")
    parser.add_argument("--url", default=os.getenv("GOVREG_URL", f"http://{config.HOST}:{config.PORT}"))
    parser.add_argument("--network", default=None, help="Deployment network (default: GOVREG_NETWORK)")
    parser.add_argument("--format", choices=["json", "text"], default="json")

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_acc = sub.add_parser("accounts", help="Generate validator keypairs")
    p_acc.add_argument("--out", default=str(config.get_data_dir() / "validators"))
    p_acc.add_argument("--count", type=int, default=4)
    p_acc.add_argument("--prefix", default="validator")

    p_dep = sub.add_parser("deploy", help="Construct the registry for a network")
    p_dep.add_argument("--key", required=True, help="Deployer private key file")
    p_dep.add_argument("--admin", default=None, help="Principal to authorize after construction")
    p_dep.add_argument("--genesis", default=None, help="YAML genesis file")

    p_serve = sub.add_parser("serve", help="Run the HTTP service")
    p_serve.add_argument("--host", default=config.HOST)
    p_serve.add_argument("--port", type=int, default=config.PORT)

    sub.add_parser("owner", help="Show the current owner")

    p_param = sub.add_parser("param", help="Parameter operations")
    param_sub = p_param.add_subparsers(dest="param_cmd", required=True)
    p_get = param_sub.add_parser("get", help="Read a parameter by name or key id")
    p_get.add_argument("name")
    p_key = param_sub.add_parser("key", help="Print the key id for a name")
    p_key.add_argument("name")
    p_set = param_sub.add_parser("set", help="Set a parameter via the service")
    p_set.add_argument("name")
    p_set.add_argument("value")
    p_set.add_argument("--key", required=True, help="Caller private key file")

    p_auth = sub.add_parser("authorize", help="Grant or revoke authorization via the service")
    p_auth.add_argument("address")
    p_auth.add_argument("--revoke", action="store_true")
    p_auth.add_argument("--key", required=True, help="Owner private key file")

    p_xfer = sub.add_parser("transfer", help="Transfer ownership via the service")
    p_xfer.add_argument("new_owner")
    p_xfer.add_argument("--key", required=True, help="Owner private key file")

    p_events = sub.add_parser("events", help="List events")
    p_events.add_argument("--since", type=int, default=0)

    sub.add_parser("verify", help="Verify the journal hash chain")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    configure_logging()
    network = args.network or config.get_network()

    try:
        if args.cmd == "accounts":
            accounts = generate_validator_accounts(Path(args.out), count=args.count, prefix=args.prefix)
            _emit([asdict(a) for a in accounts], args.format)
        elif args.cmd == "deploy":
            genesis = load_genesis(Path(args.genesis)) if args.genesis else None
            deployer = principal_for_key(read_private_key(args.key))
            deployment = deploy(deployer, network=network, admin=args.admin, genesis=genesis)
            _emit(deployment.record.to_dict(), args.format)
        elif args.cmd == "serve":
            import uvicorn

            uvicorn.run("govreg.api_server:app", host=args.host, port=args.port)
        elif args.cmd == "owner":
            _emit({"owner": load_registry(network).registry.owner()}, args.format)
        elif args.cmd == "param" and args.param_cmd == "key":
            _emit({"name": args.name, "key": key_id(args.name)}, args.format)
        elif args.cmd == "param" and args.param_cmd == "get":
            key = resolve_key(args.name)
            _emit({"key": key, "value": load_registry(network).registry.get_parameter(key)}, args.format)
        elif args.cmd == "param" and args.param_cmd == "set":
            client = _remote(args)
            try:
                _emit(client.set_parameter(resolve_key(args.name), args.value), args.format)
            finally:
                client.close()
        elif args.cmd == "authorize":
            client = _remote(args)
            try:
                _emit(client.set_entity_authorization(args.address, not args.revoke), args.format)
            finally:
                client.close()
        elif args.cmd == "transfer":
            client = _remote(args)
            try:
                _emit(client.transfer_ownership(args.new_owner), args.format)
            finally:
                client.close()
        elif args.cmd == "events":
            events = load_registry(network).registry.events(since=args.since)
            _emit([e.to_dict() for e in events], args.format)
        elif args.cmd == "verify":
            record = read_record(network)
            journal = EventJournal(record.address, db_path=Path(record.journal))
            valid = journal.verify_chain()
            _emit({"address": record.address, "entries": journal.count(), "valid": valid}, args.format)
            if not valid:
                raise SystemExit(1)
        else:
            _fail(f"unknown cmd: {args.cmd}", code=2)
    except SystemExit:
        raise
    except (RegistryError, ValueError, OSError, RuntimeError, httpx.HTTPError) as exc:
        _fail(str(exc))


if __name__ == "__main__":
    main()
