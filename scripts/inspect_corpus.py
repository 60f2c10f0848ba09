import argparse
import asyncio
import logging

from energy_rag.corpus import CorpusBuilder
from energy_rag.io_utils import load_material
from energy_rag.pipeline import TutorPipeline
from energy_rag.settings import RetrievalConfig, load_settings


async def _inspect(pipeline: TutorPipeline, queries: list[str], config: RetrievalConfig) -> None:
    for query in queries:
        reply = await pipeline.prepare(query, config)
        print(f"\n> {query}")
        print(f"  scope: {reply.scope.reason} ({reply.scope.confidence})")
        if reply.kind == "refused":
            print("  refused")
            continue
        print(f"  confidence: {reply.retrieval.confidence}")
        for chunk in reply.retrieval.chunks:
            print(f"  - {chunk.id}")


def main() -> None:
    """Build the corpus from a material file and show what each question retrieves."""
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("queries", nargs="+")
    parser.add_argument("--material", default="data/material.json")
    parser.add_argument("--neural", action="store_true", help="blend neural embeddings into scores")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    _, config = load_settings()
    material = load_material(args.material)
    if args.neural:
        config.use_neural = True

    pipeline = TutorPipeline(CorpusBuilder())
    chunks = pipeline.load(material)
    print(f"{len(chunks)} chunks, {len(pipeline.corpus.get_ref_map())} references")
    asyncio.run(_inspect(pipeline, args.queries, config))


if __name__ == "__main__":
    main()
