"""
Model parser glue.

The parser itself belongs to the native library; this only feeds it bytes
and turns its diagnostics into :class:`OperationError`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from asynctrt.exceptions import OperationError
from asynctrt.ffi.handle import allocate

if TYPE_CHECKING:
    from asynctrt.ffi.network import NetworkDefinition
    from asynctrt.ffi.sync.builder import Builder

logger = logging.getLogger(__name__)


class Parser:
    """Populates a :class:`NetworkDefinition` from a serialized model."""

    @staticmethod
    def parse_network_definition(
        builder: Builder, network: NetworkDefinition, data: bytes
    ) -> NetworkDefinition:
        """
        Parse a serialized model into ``network``.

        Args:
            builder: Builder that created the network.
            network: Network definition to populate.
            data: Serialized model bytes.

        Returns:
            The populated network.

        Raises:
            OperationError: If parsing fails; the message lists the parser's
                diagnostics.
            BackendNotAvailableError: If the backend has no model parser.
        """
        backend = network.backend
        with backend.device_context.use(builder.device):
            parser = allocate(backend, "parser", backend.create_parser, network.as_mut_ptr())
            try:
                if not backend.parser_parse(parser.as_mut_ptr(), bytes(data)):
                    errors = backend.parser_errors(parser.as_ptr())
                    for error in errors:
                        logger.error(f"Parser: {error}")
                    raise OperationError("parse", "; ".join(errors) or backend.last_error())
            finally:
                parser.release()
        return network

    @staticmethod
    def parse_network_definition_from_file(
        builder: Builder, network: NetworkDefinition, path: str | Path
    ) -> NetworkDefinition:
        """Parse a model file into ``network``."""
        return Parser.parse_network_definition(builder, network, Path(path).read_bytes())
