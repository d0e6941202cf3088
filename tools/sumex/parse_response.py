"""CLI: Sumex1-Antwortdokument (generalInvoiceResponse_500) auswerten."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Iterable, Optional

from agents.sumex import ResponseInterpreter
from backend.clients.sumex.gateway import SumexGateway
from backend.core.logging import setup_logging_with_pii_redaction


def interpret_file(
    path: Path,
    *,
    pdf_out: Optional[Path] = None,
    gateway: Optional[SumexGateway] = None,
) -> dict:
    content = path.read_bytes()
    owns_gateway = gateway is None
    interpreter = ResponseInterpreter(gateway or SumexGateway.for_responses())
    try:
        output = interpreter.parse(content, path.name).to_json()
        if pdf_out is not None:
            printed = interpreter.print(content, path.name)
            if printed.success and printed.pdf_content is not None:
                pdf_out.parent.mkdir(parents=True, exist_ok=True)
                pdf_out.write_bytes(printed.pdf_content)
                output["pdf_path"] = str(pdf_out)
            else:
                output["pdf_error"] = printed.error
        return output
    finally:
        if owns_gateway:
            interpreter.close()


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Interpret a Sumex1 invoice response document")
    parser.add_argument("input", type=Path, help="Antwort-XML")
    parser.add_argument("--pdf-out", type=Path, help="PDF der Antwort zusätzlich hier ablegen")
    parser.add_argument("--log-level", default=None, help="Log-Level (default: settings.log_level)")
    return parser.parse_args(argv)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging_with_pii_redaction(args.log_level)
    if not args.input.is_file():
        raise SystemExit(f"Input not found: {args.input}")

    output = interpret_file(args.input, pdf_out=args.pdf_out)
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0 if output["success"] else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
