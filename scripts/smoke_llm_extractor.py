"""Run a real LLM extraction call against two small in-memory documents.

Usage (from repo root):
    python scripts/smoke_llm_extractor.py [llm-model-id]
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from extractify.extraction.llm_extractor import LLMExtractor, get_default_llm_client
from extractify.extraction.types import DocumentText
from extractify.schema.attributes import parse_attribute_list

_ATTRIBUTES = [
    {"id": "a1", "name": "invoiceNumber", "description": "Invoice identifier", "type": "string"},
    {"id": "a2", "name": "total", "description": "Grand total", "type": "number"},
    {
        "id": "a3",
        "name": "vendor",
        "type": "record",
        "children": [
            {"id": "a3-1", "name": "name", "type": "string"},
            {
                "id": "a3-2",
                "name": "address",
                "type": "record",
                "children": [
                    {"id": "a3-2-1", "name": "city", "type": "string"},
                    {"id": "a3-2-2", "name": "country", "type": "string"},
                ],
            },
        ],
    },
    {
        "id": "a4",
        "name": "lineItems",
        "type": "arrayOfRecords",
        "children": [
            {"id": "a4-1", "name": "description", "type": "string"},
            {"id": "a4-2", "name": "amount", "type": "number"},
        ],
    },
]


def _demo_documents() -> list[DocumentText]:
    return [
        DocumentText(
            file_name="invoice.pdf",
            text=(
                "INVOICE INV-2041\nNorthwind Traders, 12 Harbour Rd, Lisbon, Portugal\n"
                "Consulting services 1,200.00\nTravel 310.50\nTOTAL 1,510.50 EUR"
            ),
            source_order=0,
        ),
        DocumentText(
            file_name="receipt.png",
            text="Payment received for INV-2041 on 2026-10-02",
            source_order=1,
        ),
    ]


def main() -> None:
    model_id = sys.argv[1] if len(sys.argv) > 1 else "gpt-4o-mini"
    extractor = LLMExtractor(get_default_llm_client(model_id))
    output = extractor.extract(_demo_documents(), parse_attribute_list(_ATTRIBUTES))
    print(
        json.dumps(
            {
                "model": output.model_id,
                "usage": output.usage.as_dict() if output.usage else None,
                "result": output.result,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
