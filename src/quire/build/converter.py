"""Pandoc wrapper — the document conversion capability used by format adapters."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from collections.abc import Sequence
from pathlib import Path

from quire.core.errors import ConverterError, ConverterUnavailable

logger = logging.getLogger(__name__)

INPUT_FORMAT = "markdown"


class PandocConverter:
    """Runs pandoc as a subprocess.

    Text outputs (html) are read from stdout; binary outputs (pdf) are
    written to a temporary file and read back.
    """

    def __init__(
        self,
        executable: str = "pandoc",
        pdf_engine: str | None = None,
        timeout: float = 300.0,
    ):
        self.executable = executable
        self.pdf_engine = pdf_engine
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def convert(
        self,
        source: str,
        to: str,
        args: Sequence[str] = (),
        *,
        binary_suffix: str | None = None,
        env: dict[str, str] | None = None,
    ) -> bytes:
        """Convert markdown `source` to format `to`.

        Raises ConverterUnavailable when pandoc is not on PATH and
        ConverterError on a non-zero exit.
        """
        if not self.available():
            raise ConverterUnavailable(f"Document converter not found: {self.executable}")

        cmd = [self.executable, "--from", INPUT_FORMAT, "--to", to, *args]
        if to == "pdf" and self.pdf_engine:
            cmd.append(f"--pdf-engine={self.pdf_engine}")

        run_env = dict(os.environ)
        if env:
            run_env.update(env)

        if binary_suffix is None:
            return self._run(cmd, source, run_env)

        with tempfile.TemporaryDirectory(prefix="quire-") as tmp:
            out_path = Path(tmp) / f"output{binary_suffix}"
            self._run([*cmd, "--output", str(out_path)], source, run_env)
            return out_path.read_bytes()

    def _run(self, cmd: list[str], source: str, env: dict[str, str]) -> bytes:
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                input=source.encode("utf-8"),
                capture_output=True,
                timeout=self.timeout,
                env=env,
            )
        except FileNotFoundError as e:
            raise ConverterUnavailable(f"Document converter not found: {self.executable}") from e
        if result.returncode != 0:
            raise ConverterError(
                Path(cmd[0]).name,
                result.returncode,
                result.stderr.decode("utf-8", errors="replace"),
            )
        return result.stdout
