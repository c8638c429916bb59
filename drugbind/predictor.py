"""Prediction backends used by the batch scheduler.

The scheduler only depends on the :class:`PredictionClient` protocol. Two
implementations ship with the package: an HTTP client for a deployed model
service and a deterministic simulator for offline use and tests.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .config import PredictorConfig
from .errors import PredictionError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prediction:
    pk: float
    confidence: float
    prediction_id: Optional[str] = None
    atom_importances: List[Dict[str, Any]] = field(default_factory=list)
    residue_importances: List[Dict[str, Any]] = field(default_factory=list)
    reasoning: Optional[str] = None


class PredictionClient(Protocol):
    async def predict(self, smiles: str, fasta: str) -> Prediction: ...


def prediction_from_payload(payload: Any) -> Prediction:
    """Convert a predictor JSON body into a :class:`Prediction`."""
    if not isinstance(payload, dict):
        raise PredictionError("Prediction service returned a non-object response")
    try:
        pk = float(payload["binding_affinity_pk"])
        confidence = float(payload["confidence_score"])
    except KeyError as exc:
        raise PredictionError(f"Prediction response missing field: {exc.args[0]}") from exc
    except (TypeError, ValueError) as exc:
        raise PredictionError("Prediction response contained non-numeric values") from exc
    prediction_id = payload.get("prediction_id")
    return Prediction(
        pk=pk,
        confidence=confidence,
        prediction_id=str(prediction_id) if prediction_id else None,
        atom_importances=list(payload.get("atom_importances") or []),
        residue_importances=list(payload.get("residue_importances") or []),
        reasoning=payload.get("reasoning"),
    )


class HttpPredictionClient:
    """POSTs ``{smiles, fasta}`` to ``<base_url>/predict``."""

    def __init__(self, base_url: str, *, api_token: Optional[str] = None,
                 timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self._client = client

    async def predict(self, smiles: str, fasta: str) -> Prediction:
        if self._client is not None:
            return await self._post(self._client, smiles, fasta)
        async with httpx.AsyncClient(headers=self._headers, timeout=self._timeout) as client:
            return await self._post(client, smiles, fasta)

    async def _post(self, client: httpx.AsyncClient, smiles: str, fasta: str) -> Prediction:
        url = f"{self._base_url}/predict"
        try:
            resp = await client.post(url, json={"smiles": smiles, "fasta": fasta}, headers=self._headers)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            raise PredictionError(f"Prediction failed ({exc.response.status_code}): {detail}") from exc
        except httpx.HTTPError as exc:
            raise PredictionError(f"Prediction service unreachable: {exc}") from exc
        except ValueError as exc:
            raise PredictionError("Prediction service returned invalid JSON") from exc
        return prediction_from_payload(payload)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body.get("message") or body)
    return str(body)[:200]


def deterministic_score(*components: str) -> float:
    """Return a deterministic pseudo-random score in [0, 1)."""
    digest = hashlib.blake2b("::".join(components).encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, byteorder="big") / float(2**64)


class SimulatedPredictionClient:
    """Offline stand-in that derives pK and confidence from input hashes."""

    def __init__(self, *, latency: float = 0.0) -> None:
        self._latency = max(0.0, latency)

    async def predict(self, smiles: str, fasta: str) -> Prediction:
        if self._latency:
            await asyncio.sleep(self._latency)
        pk = 4.0 + 6.0 * deterministic_score("pk", smiles, fasta)
        confidence = 0.55 + 0.4 * deterministic_score("confidence", smiles, fasta)
        digest = hashlib.blake2s(f"{smiles}::{fasta}".encode("utf-8"), digest_size=6).hexdigest()
        return Prediction(pk=round(pk, 2), confidence=round(confidence, 3), prediction_id=f"sim_{digest}")


def build_predictor(cfg: PredictorConfig) -> PredictionClient:
    if cfg.simulated:
        logger.info("No predictor endpoint configured; using the deterministic simulator")
        return SimulatedPredictionClient(latency=cfg.simulated_latency_seconds)
    logger.info("Using prediction service at %s", cfg.base_url)
    return HttpPredictionClient(cfg.base_url, api_token=cfg.api_token, timeout=cfg.timeout_seconds)


__all__ = [
    "HttpPredictionClient",
    "Prediction",
    "PredictionClient",
    "SimulatedPredictionClient",
    "build_predictor",
    "deterministic_score",
    "prediction_from_payload",
]
