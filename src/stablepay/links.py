# src/stablepay/links.py
"""Wallet deep links for a freshly created payment."""
from urllib.parse import quote

from stablepay.models.payment import Payment


def build_wallet_links(payment: Payment) -> dict:
    """
    Links that open a pre-filled transfer in common mobile wallets, plus a
    `direct` block for manual entry. Amounts in the links are the raw
    token units, so the wallet sends exactly the disambiguated amount.
    """
    contract = payment.contract_address
    wallet = payment.wallet_address
    token_amount = str(payment.raw_amount)
    amount = format(payment.disambiguated_amount, "f")

    eip681 = f"ethereum:{contract}/transfer?address={wallet}&uint256={token_amount}"
    return {
        "metamask": (
            f"https://metamask.app.link/send/{contract}@{payment.chain_id}"
            f"/transfer?address={wallet}&uint256={token_amount}"
        ),
        "trustWallet": (
            f"trust://send?asset={payment.chain_id}&address={wallet}"
            f"&amount={amount}&token={contract}&memo={payment.id}"
        ),
        "coinbaseWallet": f"https://go.cb-w.com/dapp?cb_url={quote(eip681, safe='')}",
        "direct": {
            "network": payment.network_name,
            "chainId": payment.chain_id,
            "contractAddress": contract,
            "toAddress": wallet,
            "amount": amount,
            "tokenAmount": token_amount,
            "decimals": payment.decimals,
            "symbol": payment.token_symbol,
        },
    }


def qr_payload(links: dict) -> str:
    """String to encode in the payment QR code (MetaMask link)."""
    return links["metamask"]
