"""Bundle of the external-service clients a research run talks to."""

from __future__ import annotations

from dataclasses import dataclass

from succession_research.config import Config
from succession_research.services.page_fetcher import PageFetcher
from succession_research.services.search import SerperClient
from succession_research.services.summarizer import Summarizer


@dataclass
class ResearchClients:
    search: SerperClient
    fetcher: PageFetcher
    summarizer: Summarizer


def build_clients(config: Config) -> ResearchClients:
    return ResearchClients(
        search=SerperClient(config),
        fetcher=PageFetcher(config),
        summarizer=Summarizer(config),
    )
