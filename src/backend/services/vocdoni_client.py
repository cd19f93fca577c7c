"""
Anonymous tally adapter backed by the Vocdoni network.

Ballots on anonymous polls are cast on Vocdoni so the server never stores
who chose what. At close time the per-option counts come from the election
result, and each stored receipt is verified to recover the chosen option.

Option indices are zero-based and equal `display_order - 1`.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import structlog

from core.config import settings
from core.exceptions import AdapterUnavailable

logger = structlog.get_logger(__name__)


@dataclass
class ElectionTally:
    """Result of one election: counts[i] is the count for option index i."""

    counts: list[int] = field(default_factory=list)
    total: int = 0


class AnonymousTallyAdapter(Protocol):
    async def fetch_election_result(self, election_id: str) -> ElectionTally: ...

    async def verify_ballot_receipt(self, election_id: str, receipt_id: str) -> Optional[int]: ...

    async def cast_ballot(self, election_id: str, option_index: int, voter_id: Optional[str] = None) -> str: ...


class VocdoniClient:
    """
    Client for the Vocdoni v2 REST API.

    Casting goes through a relay (VOCDONI_CAST_URL) that holds the voter
    wallets; when no relay is configured, casting is unavailable and clients
    are expected to cast themselves and submit the receipt.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: Optional[str] = None,
        cast_url: Optional[str] = None,
        cast_api_key: Optional[str] = None,
    ):
        self.http_client = http_client
        self.base_url = (base_url or settings.VOCDONI_API_URL).rstrip("/")
        self.cast_url = cast_url if cast_url is not None else settings.VOCDONI_CAST_URL
        self.cast_api_key = cast_api_key if cast_api_key is not None else settings.VOCDONI_CAST_API_KEY

    @classmethod
    def from_settings(cls) -> "VocdoniClient":
        transport = httpx.AsyncHTTPTransport(retries=settings.EXTERNAL_HTTP_RETRIES)
        http_client = httpx.AsyncClient(transport=transport, timeout=settings.EXTERNAL_HTTP_TIMEOUT_SECONDS)
        return cls(http_client)

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self.http_client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise AdapterUnavailable(f"Vocdoni returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AdapterUnavailable(f"Vocdoni request failed: {e}") from e
        except ValueError as e:
            raise AdapterUnavailable("Vocdoni returned a malformed body") from e

    async def fetch_election_result(self, election_id: str) -> ElectionTally:
        """
        Read the per-option counts of a single-question election.

        `result` is a list of questions, each a list of decimal-string counts.
        An election with no published result yields an empty tally.
        """
        data = await self._request_json("GET", f"{self.base_url}/elections/{election_id}")

        results = data.get("result") if isinstance(data, dict) else None
        if not results:
            return ElectionTally()

        try:
            counts = [int(value or 0) for value in results[0]]
            total = int(data.get("voteCount") or sum(counts))
        except (TypeError, ValueError) as e:
            raise AdapterUnavailable("Vocdoni election result is not numeric") from e

        return ElectionTally(counts=counts, total=total)

    async def verify_ballot_receipt(self, election_id: str, receipt_id: str) -> Optional[int]:
        """Return the option index a receipt voted for, or None if not decodable."""
        data = await self._request_json("GET", f"{self.base_url}/votes/verify/{election_id}/{receipt_id}")

        package = data.get("package") if isinstance(data, dict) else None
        if not isinstance(package, list) or not package:
            return None

        choice = package[0]
        if isinstance(choice, bool) or not isinstance(choice, int):
            return None
        return choice

    async def cast_ballot(self, election_id: str, option_index: int, voter_id: Optional[str] = None) -> str:
        """Cast a ballot through the relay and return its receipt id."""
        if not self.cast_url:
            raise AdapterUnavailable("No Vocdoni ballot relay configured")

        headers = {}
        if self.cast_api_key:
            headers["Authorization"] = f"Bearer {self.cast_api_key}"

        data = await self._request_json(
            "POST",
            self.cast_url,
            json={"election_id": election_id, "option_index": option_index, "voter_id": voter_id},
            headers=headers,
        )

        receipt = data.get("vocdoni_vote_id") if isinstance(data, dict) else None
        if not isinstance(receipt, str) or not receipt:
            raise AdapterUnavailable("Vocdoni relay returned no receipt")

        logger.info("vocdoni_ballot_cast", election_id=election_id)
        return receipt
