import asyncio

from energy_rag.corpus import CorpusBuilder
from energy_rag.io_utils import load_material
from energy_rag.retrieval import Retriever
from energy_rag.scope import check_scope


async def _retrieve_summary(retriever: Retriever, query: str) -> dict:
    result = await retriever.retrieve(query)
    return {"confidence": result.confidence, "chunks": [chunk.id for chunk in result.chunks]}


if __name__ == "__main__":
    corpus = CorpusBuilder()
    chunks = corpus.build(load_material())
    retriever = Retriever(corpus)
    query = "How do control rods keep a fission reactor stable?"
    print(
        {
            "chunks": len(chunks),
            "references": len(corpus.get_ref_map()),
            "scope": check_scope(query).reason,
            "retrieval": asyncio.run(_retrieve_summary(retriever, query)),
        }
    )
