# Browser-tab configuration shared between coordinator and agents
import os
from typing import List

from pydantic import BaseModel

# Tabs opened by "open-chrome" when neither the coordinator nor the
# environment supplies any
DEFAULT_URLS = [
    "http://localhost/domjudge/team",
    "https://en.cppreference.com/w/",
]


class AppConfig(BaseModel):
    """
    Runtime-configurable settings pushed from the coordinator to agents.

    Attributes:
        urls: Tabs to open in the browser, in order
    """
    urls: List[str] = []

    @classmethod
    def default(cls) -> "AppConfig":
        env_urls = os.getenv("GRADEKEEPER_URLS")
        if env_urls:
            cleaned = cls(urls=env_urls.split(",")).normalized()
            if cleaned.urls:
                return cleaned
        return cls(urls=list(DEFAULT_URLS))

    def normalized(self) -> "AppConfig":
        """Strip whitespace and drop empty and duplicate URLs, keeping order."""
        seen = set()
        urls = []
        for raw in self.urls:
            url = raw.strip()
            if not url or url in seen:
                continue
            seen.add(url)
            urls.append(url)
        return AppConfig(urls=urls)

    def validate_urls(self):
        if not self.urls:
            raise ValueError("at least one URL is required")
