__all__ = [
    # Registry
    "Foundry",
    "FoundryState",
    "DeployedContract",
    # Launcher
    "AnvilNode",
    "BannerInfo",
    "LaunchOptions",
    "launch_anvil",
    # Artifacts
    "Artifact",
    "FoundryBase",
    "compile_sol",
    "link_bytecode",
    "resolve_artifact",
    # Wallets
    "DevWallet",
    "ImpersonatedWallet",
    "derive_private_key",
    # ENS
    "Node",
    "Profile",
    "RecordQuery",
    "RecordResult",
    "Resolver",
    "dns_encode",
    "namehash",
    "registry_contract",
    # Chain
    "Contract",
    "Interface",
    "PendingTransaction",
    "RpcClient",
    # Errors
    "BlocksmithError",
    "BuildError",
    "ConfigError",
    "DeploymentError",
    "Diagnostic",
    "EmptyBytecodeError",
    "LaunchError",
    "NotReadyError",
    "RpcError",
    "TransactionError",
    "UnknownContractError",
    "UnknownWalletError",
    "UnownedWalletError",
    "UnresolvedLibraryError",
]

from .errors import (
    BlocksmithError,
    BuildError,
    ConfigError,
    DeploymentError,
    Diagnostic,
    EmptyBytecodeError,
    LaunchError,
    NotReadyError,
    RpcError,
    TransactionError,
    UnknownContractError,
    UnknownWalletError,
    UnownedWalletError,
    UnresolvedLibraryError,
)
from .chain.abi import Interface
from .chain.contract import Contract
from .chain.rpc import RpcClient
from .chain.tx import PendingTransaction
from .wallets import DevWallet, ImpersonatedWallet, derive_private_key
from .ens import Node, Profile, RecordQuery, RecordResult, Resolver, dns_encode, namehash, registry_contract
from .forge import Artifact, FoundryBase, compile_sol, link_bytecode, resolve_artifact
from .anvil import AnvilNode, BannerInfo, LaunchOptions, launch_anvil
from .foundry import DeployedContract, Foundry, FoundryState
