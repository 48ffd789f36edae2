"""
Odos Quote Client for keeper routing payloads.

Fetches a swap path from the Odos smart order router and assembles the
transaction data a keeper hands to increase_leverage / decrease_leverage.
The vault itself never calls this client.
"""
import logging
from typing import Any, Dict, Optional
import aiohttp
import asyncio

from dloop.core.types import RoutingPayload

logger = logging.getLogger(__name__)


class OdosQuoteError(Exception):
    """Raised when Odos cannot produce a usable route after all retries."""


class OdosQuoteClient:
    """
    Async client for the Odos SOR quote and assemble endpoints.

    Requests are retried with exponential backoff on transport errors. A
    session may be injected; otherwise one is opened per call.
    """

    def __init__(
        self,
        chain_id: int,
        user_address: str,
        odos_endpoint: str = "https://api.odos.xyz",
        timeout_sec: float = 5.0,
        max_retries: int = 3,
        slippage_limit_pct: float = 0.5,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize Odos quote client.

        Args:
            chain_id: EVM chain the vault lives on
            user_address: Address that will execute the swap (the vault)
            odos_endpoint: Odos API base URL
            timeout_sec: HTTP request timeout
            max_retries: Maximum retry attempts
            slippage_limit_pct: Slippage limit sent to the router, in percent
            session: Optional shared aiohttp session
        """
        self.chain_id = chain_id
        self.user_address = user_address
        self.odos_endpoint = odos_endpoint.rstrip("/")
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.slippage_limit_pct = slippage_limit_pct
        self.session = session

        logger.info(f"Initialized OdosQuoteClient: {self.odos_endpoint} (chain {chain_id})")

    async def get_routing_payload(
        self,
        input_token: str,
        output_token: str,
        amount_in: int,
    ) -> RoutingPayload:
        """
        Quote and assemble a swap of amount_in input_token into output_token.

        Args:
            input_token: Address of the token sold
            output_token: Address of the token bought
            amount_in: Input amount in native units

        Returns:
            RoutingPayload with the path id, quoted amounts and calldata

        Raises:
            OdosQuoteError: If the router returns no path or all attempts fail
        """
        quote_body = {
            "chainId": self.chain_id,
            "inputTokens": [{"tokenAddress": input_token, "amount": str(amount_in)}],
            "outputTokens": [{"tokenAddress": output_token, "proportion": 1}],
            "userAddr": self.user_address,
            "slippageLimitPercent": self.slippage_limit_pct,
            "compact": True,
        }
        quote = await self._post_with_retry("/sor/quote/v2", quote_body)
        path_id = quote.get("pathId")
        if not path_id:
            raise OdosQuoteError(f"Odos returned no path for {input_token} -> {output_token}")

        assembled = await self._post_with_retry(
            "/sor/assemble",
            {"userAddr": self.user_address, "pathId": path_id, "simulate": False},
        )
        transaction = assembled.get("transaction") or {}

        payload = RoutingPayload(
            path_id=path_id,
            input_token=input_token,
            output_token=output_token,
            amount_in=int(quote.get("inAmounts", [amount_in])[0]),
            amount_out=int(quote.get("outAmounts", [0])[0]),
            transaction_data=transaction.get("data"),
        )
        logger.debug(
            f"Odos route {path_id}: {payload.amount_in} {input_token} -> "
            f"{payload.amount_out} {output_token}"
        )
        return payload

    async def _post_with_retry(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if self.session is not None:
            return await self._post(self.session, path, body)
        async with aiohttp.ClientSession() as session:
            return await self._post(session, path, body)

    async def _post(self, session, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.odos_endpoint}{path}"
        for attempt in range(self.max_retries):
            try:
                async with session.post(
                    url,
                    json=body,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
                ) as response:
                    response.raise_for_status()
                    return await response.json()

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                wait_time = 2 ** attempt
                logger.warning(
                    f"Odos request {path} failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"All Odos attempts for {path} failed")
                    raise OdosQuoteError(f"Odos {path} failed after {self.max_retries} attempts") from e
        raise OdosQuoteError(f"Odos {path} was not attempted (max_retries={self.max_retries})")
