"""File input: read plain or gzipped varnishlog dumps and parse them."""

import gzip
import logging
import os

from varnishlog.config import Config
from varnishlog.parser import TransactionParser
from varnishlog.transaction import TransactionSet

logger = logging.getLogger(__name__)


def read_text(path: str, encoding: str = "utf-8") -> str:
    """Read a log file, transparently decompressing .gz files."""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"File not found: {path}")
    if path.endswith(".gz"):
        with gzip.open(path, "rt", encoding=encoding) as f:
            return f.read()
    with open(path, "r", encoding=encoding) as f:
        return f.read()


def parse_text(text: str, config: Config | None = None) -> TransactionSet:
    config = config or Config()
    return TransactionParser(text.splitlines(), max_parent_depth=config.max_parent_depth).parse()


def parse_file(path: str, config: Config | None = None) -> TransactionSet:
    """Parse a whole log file into a TransactionSet. Raises ParseError on malformed logs."""
    config = config or Config()
    text = read_text(path, encoding=config.encoding)
    ts = parse_text(text, config)
    logger.info("Parsed %d transactions from %s", len(ts), path)
    return ts
