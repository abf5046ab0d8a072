"""
Admin outreach to users who generated a Geoplet but never minted.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..config import FarcasterConfig
from ..core.persistence import GenerationRepository
from ..exceptions import ConfigurationError, FarcasterIntegrationError
from ..integrations.farcaster.neynar_api_client import NeynarAPIClient

logger = logging.getLogger(__name__)

FRIENDLY_VARIATIONS = [
    "your Geoplet is doing a little happy dance... mint it whenever you wanna join in 💃✨",
    "your Geoplet is practicing its 'I'm minted!' pose, take your time 😄🎨",
    "your Geoplet keeps whispering, 'Are we minting today?' but it's cool if not 😂💫",
    "your Geoplet is vibing in the waiting room, snacking on pixels 🍿🟦",
    "your Geoplet is ready to glow up into a GeoTizen whenever you feel the spark ✨😎",
]


@dataclass
class UnconvertedUser:
    fid: int
    username: Optional[str]
    generated_at: float
    cast_sent: bool


@dataclass
class UnconvertedReport:
    users: List[UnconvertedUser]
    total: int
    tag_string: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "users": [asdict(u) for u in self.users],
            "total": self.total,
            "tagString": self.tag_string,
        }


@dataclass
class CastOutcome:
    fid: int
    success: bool
    username: Optional[str] = None
    cast_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CastBatchResult:
    results: List[CastOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [asdict(r) for r in self.results],
            "summary": {"total": self.total, "successful": self.successful, "failed": self.failed},
        }


class OutreachService:
    """Lists unconverted users and sends them personalized casts."""

    def __init__(
        self,
        generations: GenerationRepository,
        neynar: Optional[NeynarAPIClient],
        config: FarcasterConfig,
    ):
        self.generations = generations
        self.neynar = neynar
        self.config = config

    def is_configured(self) -> bool:
        return self.neynar is not None and bool(self.config.signer_uuid)

    def _require_neynar(self) -> NeynarAPIClient:
        if not self.is_configured():
            raise ConfigurationError("Neynar API key or signer UUID is not configured")
        return self.neynar

    async def list_unconverted(self, cast_sent: Optional[bool] = None) -> UnconvertedReport:
        records = await self.generations.list_unconverted(cast_sent=cast_sent)
        users = [
            UnconvertedUser(fid=r.fid, username=r.username, generated_at=r.created_at, cast_sent=r.cast_sent)
            for r in records
        ]
        tag_string = " ".join(f"@{u.username}" for u in users if u.username)
        return UnconvertedReport(users=users, total=len(users), tag_string=tag_string)

    async def mark_contacted(self, fids: List[int], contacted: bool = True) -> int:
        updated = await self.generations.set_cast_sent(fids, contacted)
        logger.info(f"Marked {updated} users as {'contacted' if contacted else 'not contacted'}")
        return updated

    def compose_text(self, username: str, message: str, index: int, template: Optional[str] = None) -> str:
        body = FRIENDLY_VARIATIONS[index % len(FRIENDLY_VARIATIONS)] if template == "friendly" else message
        return f"Hey! @{username} {body}"

    def share_url(self, fid: int) -> str:
        # Cache-busting parameter so clients refresh the share image
        return f"{self.config.app_url.rstrip('/')}/share/unminted/{fid}?v={int(time.time() * 1000)}"

    async def send_casts(self, fids: List[int], message: str, template: Optional[str] = None) -> CastBatchResult:
        """Cast to each FID in turn; per-user failures do not stop the batch."""
        neynar = self._require_neynar()
        if not message and template != "friendly":
            raise ValueError("A message is required unless the friendly template is used")

        records = {r.fid: r for r in await self.generations.get_many(fids)}
        batch = CastBatchResult()
        sent_fids: List[int] = []

        for index, fid in enumerate(fids):
            record = records.get(fid)
            username = record.username if record else None
            if not username:
                batch.results.append(CastOutcome(fid=fid, success=False, error="Username not found"))
                continue

            text = self.compose_text(username, message, index, template)
            try:
                response = await neynar.publish_cast(
                    text, self.config.signer_uuid, embeds=[{"url": self.share_url(fid)}]
                )
            except FarcasterIntegrationError as e:
                logger.warning(f"Cast to @{username} (FID {fid}) failed: {e}")
                batch.results.append(CastOutcome(fid=fid, success=False, username=username, error=str(e)))
            else:
                cast_hash = (response.get("cast") or {}).get("hash")
                batch.results.append(CastOutcome(fid=fid, success=True, username=username, cast_hash=cast_hash))
                sent_fids.append(fid)

            if index < len(fids) - 1:
                await asyncio.sleep(self.config.cast_delay_seconds)

        if sent_fids:
            await self.generations.set_cast_sent(sent_fids, True)
        logger.info(f"Outreach batch: {batch.successful}/{batch.total} casts sent")
        return batch

    async def test_api_key(self) -> Dict[str, Any]:
        """Check that the signer is approved and resolve the account behind it."""
        neynar = self._require_neynar()
        signer = await neynar.lookup_signer(self.config.signer_uuid)
        status = signer.get("status")
        if status != "approved":
            return {"success": False, "signerStatus": status, "error": f"Signer is not approved (status: {status})"}

        fid = signer.get("fid")
        users = await neynar.get_users_by_fids([fid]) if fid else []
        user = users[0] if users else {}
        return {
            "success": True,
            "signerStatus": status,
            "fid": fid,
            "username": user.get("username"),
            "displayName": user.get("display_name"),
        }
