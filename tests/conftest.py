"""Shared pytest fixtures for energy_rag unit tests."""
from __future__ import annotations

import asyncio

import pytest

from energy_rag.corpus import CorpusBuilder
from energy_rag.schema import Chunk, Reference, ScoredChunk


def cite(ref_id: int) -> str:
    return f'<sup class="ref-cite" data-ref-id="{ref_id}">[{ref_id}]</sup>'


@pytest.fixture()
def sample_material() -> dict:
    return {
        "index": {
            "footer": {
                "reference": {
                    "items": [
                        {"id": 1, "text": "IAEA, Nuclear Power Reactors in the World", "url": "https://www.iaea.org"},
                        {"id": 2, "text": "ITER Organization, What is ITER?"},
                        {"id": 3, "text": "IEA, Renewables 2023"},
                    ]
                }
            },
            "highlights": {
                "items": [
                    {
                        "title": "Chain Reactions",
                        "description": "<p>Each fission releases <b>two or three</b> neutrons.</p>",
                        "detail": f"<p>Control rods absorb neutrons {cite(1)} to keep criticality.</p>",
                    },
                    {
                        "title": "Binding Energy",
                        "description": "<p>The mass defect appears as binding energy.</p>",
                        "detail": "",
                    },
                ]
            },
            "Fusion2": {
                "items": [
                    {
                        "title": "Tokamak Confinement",
                        "description": f"<p>Plasma is held by magnetic fields {cite(2)}.</p>",
                        "detail": f"<p>ITER {cite(2)} aims for Q = 10 {cite(1)}.</p>",
                    }
                ]
            },
            "safety": {"items": []},
            "features": {
                "cards": [
                    {
                        "title": "Wind Power",
                        "description": "Turbines convert kinetic energy of air.",
                        "detail": f"<p>The Betz limit caps efficiency at 59.3% {cite(3)}.</p>",
                        "references": [
                            {"text": "IEA, Renewables 2023"},
                            {"text": "Betz, A. (1920) Das Maximum der theoretisch moeglichen Ausnuetzung"},
                        ],
                    }
                ]
            },
        }
    }


@pytest.fixture()
def corpus(sample_material) -> CorpusBuilder:
    builder = CorpusBuilder()
    builder.build(sample_material)
    return builder


def make_chunk(chunk_id: str, text: str = "text", title: str = "Title", ref_ids=()) -> Chunk:
    return Chunk(
        id=chunk_id,
        section="highlights",
        section_name="Fission Introduction",
        title=title,
        text=text,
        ref_ids=tuple(ref_ids),
    )


@pytest.fixture()
def sample_chunks() -> list[Chunk]:
    return [
        make_chunk("highlights__chain_reactions", "Chain Reactions Each fission releases neutrons.", "Chain Reactions", [1]),
        make_chunk("highlights__binding_energy", "Binding Energy The mass defect appears.", "Binding Energy"),
        make_chunk("highlights__decay", "Decay Unstable nuclides decay.", "Decay", [2, 3]),
    ]


@pytest.fixture()
def ref_map() -> dict[int, Reference]:
    return {
        1: Reference(id=1, text="IAEA, Nuclear Power Reactors in the World", url="https://www.iaea.org"),
        2: Reference(id=2, text="ITER Organization, What is ITER?"),
        3: Reference(id=3, text="IEA, Renewables 2023"),
    }


class FakeEmbeddingService:
    """Returns scripted scores in chunk order and counts index builds."""

    def __init__(self, scores: list[float] | None = None, build_delay: float = 0.0):
        self.scores = scores
        self.build_delay = build_delay
        self.build_calls = 0
        self.built_with: list[bool] = []
        self.chunks: list[Chunk] = []
        self.fail_build = False
        self.fail_score = False

    async def build_index(self, chunks: list[Chunk], use_neural: bool) -> None:
        self.build_calls += 1
        self.built_with.append(use_neural)
        if self.build_delay:
            await asyncio.sleep(self.build_delay)
        if self.fail_build:
            raise RuntimeError("index backend down")
        self.chunks = list(chunks)

    async def score_chunks(self, query: str, use_neural: bool) -> list[ScoredChunk]:
        if self.fail_score:
            raise RuntimeError("scoring backend down")
        scores = self.scores if self.scores is not None else [0.5] * len(self.chunks)
        rows = [ScoredChunk(chunk=chunk, score=score) for chunk, score in zip(self.chunks, scores)]
        return sorted(rows, key=lambda row: row.score, reverse=True)
