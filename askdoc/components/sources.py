"""
Data source components for AskDoc.

A source fetches the raw text of the corpus. Plain text is kept verbatim;
HTML pages are reduced to their visible text.
"""

from abc import ABC, abstractmethod
from pathlib import Path
import logging

import requests
from bs4 import BeautifulSoup

from ..utils.data_models import SourceDocument
from ..utils.errors import FetchError

logger = logging.getLogger(__name__)


class BaseSource(ABC):
    """Abstract base class for all data source components."""

    @abstractmethod
    def load_data(self) -> SourceDocument:
        """
        Loads the raw text from the configured source.

        Raises:
            FetchError: If the source is unreachable, invalid or empty.
        """
        pass

    @abstractmethod
    def test_connection(self):
        """
        Tests the connection to the data source to ensure it is accessible.
        """
        pass


class WebSource(BaseSource):
    """
    Loads a document from a URL.
    """

    def __init__(self, url: str, timeout: float = 30):
        self.url = url
        self.timeout = timeout
        self.headers = {"User-Agent": "askdoc/0.1 (+https://pypi.org/project/askdoc/)"}

    @staticmethod
    def _html_to_text(html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        lines = (line.strip() for line in soup.get_text().splitlines())
        return "\n".join(line for line in lines if line)

    def load_data(self) -> SourceDocument:
        logger.info(f"Fetching content from URL: {self.url}")
        try:
            response = requests.get(self.url, timeout=self.timeout, headers=self.headers)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch content from URL '{self.url}': {e}", exc_info=True)
            raise FetchError(f"Failed to fetch '{self.url}': {e}") from e

        content_type = response.headers.get("Content-Type", "")
        if "html" in content_type.lower():
            text = self._html_to_text(response.text)
        else:
            text = response.text

        if not text or not text.strip():
            raise FetchError(f"No text content found at URL: {self.url}")
        logger.info(f"Fetched {len(text)} characters from {self.url}")
        return SourceDocument(content=text, source=self.url)

    def test_connection(self):
        logger.info(f"Testing connection for WebSource at URL: {self.url}")
        try:
            response = requests.head(self.url, timeout=5, headers=self.headers, allow_redirects=True)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Failed to connect to URL: {self.url}") from e
        logger.info("Connection to WebSource successful.")


class LocalFileSource(BaseSource):
    """
    Loads a document from a single file on the local filesystem.
    """

    def __init__(self, path: str, encoding: str = "utf-8"):
        self.path = Path(path)
        self.encoding = encoding
        logger.debug(f"Initialized LocalFileSource with path='{self.path}'")

    def load_data(self) -> SourceDocument:
        logger.info(f"Reading source file '{self.path}'")
        try:
            text = self.path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise FetchError(f"Could not read source file '{self.path}': {e}") from e
        if not text.strip():
            raise FetchError(f"Source file '{self.path}' is empty.")
        return SourceDocument(content=text, source=str(self.path))

    def test_connection(self):
        logger.info(f"Testing connection for LocalFileSource at path: {self.path}")
        if not self.path.exists():
            raise FetchError(f"Source path '{self.path}' does not exist.")
        if not self.path.is_file():
            raise FetchError(f"Source path '{self.path}' is not a file.")
        logger.info("Connection to LocalFileSource successful.")
