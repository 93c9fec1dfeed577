"""
Client HTTP verso i collaboratori esterni dell'assistente chat:
- MedicalKnowledgeClient: ricerca su MedlinePlus e Health.gov (in parallelo)
- ChatApiClient: chatbot generico autenticato con bearer token

Nessuno dei due tocca il database: vanno chiamati fuori da ogni transazione.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

from .config import Settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)


class MedicalKnowledgeClient:
    def __init__(
        self,
        medline_url: str,
        healthgov_url: str,
        medline_key: str = "",
        timeout: float = 10.0,
        sources: tuple[str, ...] = (),
        disclaimers: tuple[str, ...] = (),
        http: requests.Session | None = None,
    ) -> None:
        self.medline_url = medline_url
        self.healthgov_url = healthgov_url
        self.medline_key = medline_key
        self.timeout = timeout
        self.sources = list(sources)
        self.disclaimers = list(disclaimers)
        self.http = http or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "MedicalKnowledgeClient":
        return cls(
            medline_url=settings.medline_api_url,
            healthgov_url=settings.healthgov_api_url,
            medline_key=settings.medline_api_key,
            timeout=settings.chatbot_timeout_seconds,
            sources=settings.medical_sources,
            disclaimers=settings.disclaimers,
        )

    def search(self, query: str) -> dict[str, Any]:
        """Interroga le due fonti in parallelo e unisce i risultati."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            medline = pool.submit(self.search_medline, query)
            healthgov = pool.submit(self.search_healthgov, query)
            return {
                "medlinePlus": medline.result(),
                "healthGov": healthgov.result(),
                "sources": self.sources,
                "disclaimers": self.disclaimers,
            }

    def search_medline(self, query: str) -> dict[str, Any]:
        if not self.medline_url:
            return {"error": "MedlinePlus not configured"}
        try:
            r = self.http.get(
                self.medline_url,
                params={"query": query},
                headers={"API-Key": self.medline_key},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
            return {
                "results": [
                    {"title": item.get("title", ""), "summary": item.get("snippet", ""), "url": item.get("url", "")}
                    for item in data.get("result") or []
                ]
            }
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.warning("MedlinePlus lookup failed: %s", e)
            return {"error": f"Error searching MedlinePlus: {e}"}

    def search_healthgov(self, query: str) -> dict[str, Any]:
        if not self.healthgov_url:
            return {"error": "Health.gov not configured"}
        try:
            r = self.http.get(self.healthgov_url, params={"query": query}, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
            return {
                "results": [
                    {
                        "title": item.get("title", ""),
                        "description": item.get("description", ""),
                        "url": item.get("url", ""),
                    }
                    for item in data.get("items") or []
                ]
            }
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.warning("Health.gov lookup failed: %s", e)
            return {"error": f"Error searching Health.gov: {e}"}


class ChatApiClient:
    def __init__(self, url: str, api_key: str = "", timeout: float = 10.0, http: requests.Session | None = None) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.http = http or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatApiClient":
        return cls(
            url=settings.chatbot_api_url,
            api_key=settings.chatbot_api_key,
            timeout=settings.chatbot_timeout_seconds,
        )

    def ask(self, message: str, session_id: int) -> str | None:
        """
        Ritorna il campo `response` della chat API, None se la risposta non lo contiene.
        Errori di rete o payload non JSON -> UpstreamError.
        """
        if not self.url:
            raise UpstreamError("Chat API not configured")

        payload = {
            "message": message,
            "session_id": str(session_id),
            "context": "medical",
            "include_disclaimer": True,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            r = self.http.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise UpstreamError(f"Chat API call failed: {e}") from e

        answer = data.get("response") if isinstance(data, dict) else None
        if not isinstance(answer, str) or not answer.strip():
            logger.warning("chat API answered without a response field")
            return None
        return answer
