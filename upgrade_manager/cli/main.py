# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import json
import logging
import os
import sys

from .keystore import KeyStore
from ..chain.core.chain import LocalChain
from ..protocol.config.params import get_network
from ..protocol.types.common import ProtocolError
from ..protocol.types.safe import encode_prior_signatures, decode_prior_signatures
from ..deploy.artifacts import ArtifactStore
from ..deploy.config import Cancelled, DeployConfig, load_contracts
from ..deploy.deploy import deploy
from ..deploy.network import connect
from ..deploy.proposers import add_proposer, remove_proposer, withdraw_all_abstract_proposals, withdraw_changes
from ..deploy.safe import add_safe_owner, remove_safe_owner, safe_ownership, set_safe_threshold
from ..deploy.signer import resolve_signer
from ..deploy.status import report_protocol_status
from ..deploy.upgrade import change_proxy_admin, disown_contract, disown_proxy_admin, self_upgrade, upgrade

logger = logging.getLogger("upgrade_manager.cli")


def get_network_name(args):
    return args.network or os.environ.get("UPM_NETWORK", "devnet")


def build_config(args) -> DeployConfig:
    """Resolves network, signer and project contracts from the common options."""
    network_config = get_network(get_network_name(args))
    if args.node:
        network_config.rpc_url = args.node
    network = connect(network_config)
    signer = resolve_signer(network_config, private_key=args.private_key, key_name=args.key)
    root_dir = os.path.abspath(args.root)
    prior = decode_prior_signatures(args.prior_signatures) if args.prior_signatures else []
    return DeployConfig(
        network=network,
        signer=signer,
        network_config=network_config,
        root_dir=root_dir,
        contracts=load_contracts(root_dir),
        dry_run=getattr(args, "dry_run", False),
        auto_confirm=args.auto_confirm,
        immediate_config_apply=getattr(args, "immediate_config_apply", False),
        prior_signatures=prior,
    )


def print_signatures(signatures):
    """Prints the relay string for the next safe owner, if quorum was not reached."""
    if signatures is None:
        return
    print(f"Collected {len(signatures)} signature(s), pass this to the next owner with --prior-signatures:")
    print(encode_prior_signatures(signatures))


# --- Node ---
def log_contract_event(log, receipt):
    args = ", ".join(f"{k}={v}" for k, v in log.args.items())
    logger.info(f"[block {receipt.block_height}] {log.event}({args}) at {log.address}")


def cmd_node(args):
    network_config = get_network(get_network_name(args))
    chain = LocalChain(network_config)
    from ..chain.rpc.api import start_rpc_server
    for address, _ in chain.dev_keys:
        print(f"Dev account: {address}")
    chain.events.on_contract_event("*", log_contract_event)
    start_rpc_server(chain, host=args.host, port=args.port)


# --- Deploy Commands ---
def cmd_deploy(args):
    config = build_config(args)
    if not config.network_config.rpc_url:
        logger.warning("In-process network: deployed state is discarded when this command exits")
    deploy(config)


def cmd_status(args):
    config = build_config(args)
    changed = report_protocol_status(config, quiet=args.quiet)
    if changed and not args.quiet:
        sys.exit(1)


def cmd_upgrade(args):
    print_signatures(upgrade(build_config(args), args.version))


def cmd_self_upgrade(args):
    print_signatures(self_upgrade(build_config(args)))


def cmd_withdraw(args):
    config = build_config(args)
    if args.contract_id:
        withdraw_changes(config, args.contract_id)
        print(f"Withdrew pending changes of {args.contract_id}")
    else:
        withdraw_all_abstract_proposals(config)
        print("Withdrew all abstract contract proposals")


def cmd_disown(args):
    print_signatures(disown_contract(build_config(args), args.contract_id, args.new_owner))


def cmd_change_proxy_admin(args):
    print_signatures(change_proxy_admin(build_config(args), args.proxy, args.new_admin))


def cmd_disown_proxy_admin(args):
    print_signatures(disown_proxy_admin(build_config(args), args.proxy_admin, args.new_owner))


# --- Proposer Commands ---
def cmd_proposer_add(args):
    print_signatures(add_proposer(build_config(args), args.address))


def cmd_proposer_remove(args):
    print_signatures(remove_proposer(build_config(args), args.address))


# --- Safe Commands ---
def cmd_safe_setup(args):
    owners = [o.strip() for o in args.owners.split(",") if o.strip()]
    safe = safe_ownership(build_config(args), owners, args.threshold)
    print(f"Upgrade manager is now owned by safe {safe}")


def cmd_safe_add_owner(args):
    print_signatures(add_safe_owner(build_config(args), args.owner, args.threshold))


def cmd_safe_remove_owner(args):
    print_signatures(remove_safe_owner(build_config(args), args.owner, args.threshold))


def cmd_safe_threshold(args):
    print_signatures(set_safe_threshold(build_config(args), args.threshold))


# --- Keys Commands ---
def cmd_keys_add(args):
    key = KeyStore().create_key(args.name)
    print(f"Key '{args.name}' created.")
    print(f"Address: {key['address']}")
    print(f"Pubkey:  {key['public_key']}")
    print("Important: Private key saved unencrypted. Do not share!")


def cmd_keys_import(args):
    key = KeyStore().import_key(args.name, args.private_key)
    print(f"Key '{args.name}' imported.")
    print(f"Address: {key['address']}")


def cmd_keys_list(args):
    keys = KeyStore().list_keys()
    if not keys:
        print("No keys found.")
        return

    print(f"{'Name':<15} {'Address':<45}")
    print("-" * 60)
    for k in keys:
        print(f"{k['name']:<15} {k['address']:<45}")


def cmd_keys_show(args):
    key = KeyStore().get_key(args.name)
    if not key:
        print(f"Key '{args.name}' not found.")
        sys.exit(1)
    print(json.dumps({k: v for k, v in key.items() if k != "private_key"}, indent=2))


# --- Artifacts ---
def cmd_compile(args):
    store = ArtifactStore()
    names = args.contracts or [c.contract for c in load_contracts(os.path.abspath(args.root))]
    for name in names:
        print(f"Wrote {store.write(name, args.out)}")


def add_common_options(p):
    p.add_argument("--network", help="Network name (default: $UPM_NETWORK or devnet)")
    p.add_argument("--node", help="Override the node URL of the network")
    p.add_argument("--key", help="Keystore key name used to sign")
    p.add_argument("--private-key", help="Hex private key used to sign (or $UPM_DEPLOY_KEY)")
    p.add_argument("--root", default=".", help="Project root holding upgrade-manager.json")
    p.add_argument("--auto-confirm", action="store_true", help="Answer yes to confirmations")
    p.add_argument("--prior-signatures", help="Safe signatures collected by previous owners")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="upm", description="Upgrade Manager CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    p_node = subparsers.add_parser("node", help="Run a local chain with an RPC server")
    p_node.add_argument("--network", help="Network whose dev accounts are funded (default: devnet)")
    p_node.add_argument("--host", default="0.0.0.0")
    p_node.add_argument("--port", type=int, default=8545)

    p_deploy = subparsers.add_parser("deploy", help="Deploy, configure and propose changes")
    add_common_options(p_deploy)
    p_deploy.add_argument("--dry-run", action="store_true", help="Show what would be deployed")
    p_deploy.add_argument("--immediate-config-apply", action="store_true",
                          help="Apply config calls right away instead of proposing them")

    p_status = subparsers.add_parser("status", help="Show adopted contracts and pending changes")
    add_common_options(p_status)
    p_status.add_argument("--quiet", action="store_true", help="Exit 0 even when changes are detected")

    p_upgrade = subparsers.add_parser("upgrade", help="Apply all pending changes")
    add_common_options(p_upgrade)
    p_upgrade.add_argument("version", help="New protocol version label")

    p_self = subparsers.add_parser("self-upgrade", help="Upgrade the upgrade manager itself")
    add_common_options(p_self)

    p_withdraw = subparsers.add_parser("withdraw", help="Withdraw pending changes or abstract proposals")
    add_common_options(p_withdraw)
    p_withdraw.add_argument("contract_id", nargs="?", help="Adopted contract id (default: all abstract proposals)")

    p_disown = subparsers.add_parser("disown", help="Hand an adopted contract to a new owner")
    add_common_options(p_disown)
    p_disown.add_argument("contract_id")
    p_disown.add_argument("new_owner")

    p_cpa = subparsers.add_parser("change-proxy-admin", help="Move a proxy to another proxy admin")
    add_common_options(p_cpa)
    p_cpa.add_argument("proxy")
    p_cpa.add_argument("new_admin")

    p_dpa = subparsers.add_parser("disown-proxy-admin", help="Transfer a proxy admin away from the manager")
    add_common_options(p_dpa)
    p_dpa.add_argument("proxy_admin")
    p_dpa.add_argument("new_owner")

    # proposers
    p_prop = subparsers.add_parser("proposer", help="Manage upgrade proposers")
    sp_prop = p_prop.add_subparsers(dest="subcommand")
    pp_add = sp_prop.add_parser("add", help="Add a proposer")
    add_common_options(pp_add)
    pp_add.add_argument("address")
    pp_rm = sp_prop.add_parser("remove", help="Remove a proposer")
    add_common_options(pp_rm)
    pp_rm.add_argument("address")

    # safe
    p_safe = subparsers.add_parser("safe", help="Multisig ownership of the upgrade manager")
    sp_safe = p_safe.add_subparsers(dest="subcommand")
    ps_setup = sp_safe.add_parser("setup", help="Deploy a safe and make it the owner")
    add_common_options(ps_setup)
    ps_setup.add_argument("owners", help="Comma separated owner addresses")
    ps_setup.add_argument("threshold", type=int)
    ps_add = sp_safe.add_parser("add-owner", help="Add a safe owner")
    add_common_options(ps_add)
    ps_add.add_argument("owner")
    ps_add.add_argument("--threshold", type=int, help="New threshold (default: unchanged)")
    ps_rm = sp_safe.add_parser("remove-owner", help="Remove a safe owner")
    add_common_options(ps_rm)
    ps_rm.add_argument("owner")
    ps_rm.add_argument("--threshold", type=int, help="New threshold (default: unchanged, capped)")
    ps_thr = sp_safe.add_parser("threshold", help="Change the safe threshold")
    add_common_options(ps_thr)
    ps_thr.add_argument("threshold", type=int)

    # keys
    p_keys = subparsers.add_parser("keys", help="Manage keys")
    sp_keys = p_keys.add_subparsers(dest="subcommand")

    pk_add = sp_keys.add_parser("add", help="Create new key")
    pk_add.add_argument("name", help="Key name")

    pk_imp = sp_keys.add_parser("import", help="Import private key")
    pk_imp.add_argument("name", help="Key name")
    pk_imp.add_argument("--private-key", required=True, help="Hex private key")

    sp_keys.add_parser("list", help="List keys")

    pk_show = sp_keys.add_parser("show", help="Show key details")
    pk_show.add_argument("name", help="Key name")

    p_compile = subparsers.add_parser("compile", help="Write contract artifacts as JSON")
    p_compile.add_argument("contracts", nargs="*", help="Contract names (default: all declared)")
    p_compile.add_argument("--root", default=".")
    p_compile.add_argument("--out", default="artifacts")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        if args.command == "node": cmd_node(args)
        elif args.command == "deploy": cmd_deploy(args)
        elif args.command == "status": cmd_status(args)
        elif args.command == "upgrade": cmd_upgrade(args)
        elif args.command == "self-upgrade": cmd_self_upgrade(args)
        elif args.command == "withdraw": cmd_withdraw(args)
        elif args.command == "disown": cmd_disown(args)
        elif args.command == "change-proxy-admin": cmd_change_proxy_admin(args)
        elif args.command == "disown-proxy-admin": cmd_disown_proxy_admin(args)
        elif args.command == "proposer":
            if args.subcommand == "add": cmd_proposer_add(args)
            elif args.subcommand == "remove": cmd_proposer_remove(args)
            else: p_prop.print_help()
        elif args.command == "safe":
            if args.subcommand == "setup": cmd_safe_setup(args)
            elif args.subcommand == "add-owner": cmd_safe_add_owner(args)
            elif args.subcommand == "remove-owner": cmd_safe_remove_owner(args)
            elif args.subcommand == "threshold": cmd_safe_threshold(args)
            else: p_safe.print_help()
        elif args.command == "keys":
            if args.subcommand == "add": cmd_keys_add(args)
            elif args.subcommand == "import": cmd_keys_import(args)
            elif args.subcommand == "list": cmd_keys_list(args)
            elif args.subcommand == "show": cmd_keys_show(args)
            else: p_keys.print_help()
        elif args.command == "compile": cmd_compile(args)
        else:
            parser.print_help()
    except (ProtocolError, Cancelled, ValueError, KeyError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
