# src/stablepay/__init__.py

import random
from typing import Optional

from .amounts import AmountDisambiguator
from .chain import ChainClient, build_chain_clients
from .config import GatewayConfig, PaymentConfig, RpcConfig, get_settings
from .gateway import PaymentGateway
from .networks import NetworkRegistry
from .repositories import PaymentLedger
from .scheduler import ManualClock, Scheduler, SystemClock

from .exceptions import *


def create_gateway(
    config: Optional[GatewayConfig] = None,
    chain_clients: Optional[dict[str, ChainClient]] = None,
    clock=None,
    rng: Optional[random.Random] = None,
) -> PaymentGateway:
    """
    Builds a fully wired PaymentGateway.

    :param config: explicit settings; taken from the environment when omitted.
    :param chain_clients: network key -> client; JSON-RPC clients for every
                          supported network are created when omitted.
    :param clock: time source shared by expiry and reservations.
    :param rng: random source for amount disambiguation.
    """
    if config is None:
        config = get_settings().gateway_config()

    clock = clock or SystemClock()
    registry = NetworkRegistry(rpc_urls=config.rpc.urls)
    scheduler = Scheduler(clock)
    disambiguator = AmountDisambiguator(
        ttl_seconds=config.payment.reservation_ttl,
        clock=clock,
        rng=rng,
    )
    ledger = PaymentLedger(
        registry=registry,
        disambiguator=disambiguator,
        scheduler=scheduler,
        wallet_address=config.wallet_address,
        testnet=config.testnet,
        payment_timeout=config.payment.timeout,
        amount_precision=config.payment.amount_precision,
    )
    if chain_clients is None:
        chain_clients = build_chain_clients(registry, config.testnet, timeout=config.rpc.timeout)

    return PaymentGateway(
        config=config,
        registry=registry,
        ledger=ledger,
        disambiguator=disambiguator,
        scheduler=scheduler,
        chain_clients=chain_clients,
    )


__all__ = [
    "PaymentGateway", "create_gateway",
    "GatewayConfig", "PaymentConfig", "RpcConfig",
    "NetworkRegistry", "PaymentLedger", "AmountDisambiguator",
    "Scheduler", "ManualClock", "SystemClock",
    "StablePayError", "ClientError", "ConflictError", "VerificationError",
    "TransientChainError", "SignatureError",
]
