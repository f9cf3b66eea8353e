from mindloop.core.config import MemoryLimits
from mindloop.core.memory import SELF_ID, AssociativeMemory, concept_id, extract_keywords, slug


def test_slug_and_ids():
    assert slug("Hello World!") == "hello_world"
    assert slug("!!!") == "concept"
    assert concept_id("keyword", "Python Code") == "keyword:python_code"


def test_extract_keywords_drops_stopwords():
    words = extract_keywords("the memory of the memory graph and a concept", 3)
    assert words[0] == "memory"
    assert "the" not in words


def test_strength_stays_in_unit_interval(memory):
    cid = memory.get_or_create_concept("curiosity")
    for _ in range(100):
        memory.get_or_create_concept("curiosity")
    assert memory.concept(cid).strength <= 1.0

    memory.connect(SELF_ID, cid)
    for ok in [False] * 200 + [True] * 200 + [False] * 50:
        memory.reinforce_outcome([cid], ok)
        assert 0.0 <= memory.concept(SELF_ID).strength <= 1.0
        assert 0.01 <= memory.edge(SELF_ID, cid).weight <= 1.0


def test_connect_is_one_edge_per_pair(memory):
    a = memory.get_or_create_concept("alpha")
    b = memory.get_or_create_concept("beta")
    memory.connect(a, b, 0.1)
    before = memory.association_count
    memory.connect(b, a, 0.1)
    assert memory.association_count == before
    assert abs(memory.edge(a, b).weight - 0.2) < 1e-9
    memory.connect(a, a)
    assert memory.association_count == before


def test_prune_is_idempotent(cfg):
    cfg.limits = MemoryLimits(concepts=40, associations=60)
    mem = AssociativeMemory(cfg).load()
    for i in range(30):
        mem.append_thought(f"word{i} other{i} thing{i} stuff{i}")
    mem.prune_graph()
    counts = (mem.concept_count, mem.association_count)
    assert mem.prune_graph() == 0
    assert (mem.concept_count, mem.association_count) == counts
    assert mem.concept(SELF_ID) is not None
    assert mem.concept_count <= 40 and mem.association_count <= 60


def test_save_load_roundtrip(cfg, memory):
    for i in range(5):
        memory.append_thought(f"exploring file number {i} in the workspace")
    memory.add_goal("Read every file")
    memory.add_fact("The workspace has notes", "test")
    memory.set_plan(["list dir", "read notes"])
    assert memory.save()

    again = AssociativeMemory(cfg).load()
    assert len(again.recent_thoughts(100)) == 5
    assert len(again.goals(active_only=False)) == len(memory.goals(active_only=False))
    assert again.concept_count == memory.concept_count
    assert again.association_count == memory.association_count
    assert again.current_task == "list dir"
    assert again.recent_facts(1)[0].text == "The workspace has notes"


def test_corrupt_document_bootstraps(cfg):
    cfg.memory_path.parent.mkdir(parents=True, exist_ok=True)
    cfg.memory_path.write_text("{not json", encoding="utf-8")
    mem = AssociativeMemory(cfg).load()
    assert [g.text for g in mem.goals()] == ["Explore and learn"]
    assert mem.concept(SELF_ID) is not None


def test_evicted_thoughts_reach_the_archive(cfg):
    cfg.limits = MemoryLimits(thoughts=10, archive_chunk=4)
    mem = AssociativeMemory(cfg).load()
    for i in range(15):
        mem.append_thought(f"thought {i}")
    moved = mem.archive()
    assert moved == 9
    assert len(mem.recent_thoughts(100)) == 6
    assert cfg.archive_path.exists()
    assert mem.archived_for_prompt(1, 0)["thoughts"] == "thought 8"
    assert mem.archive() == 0


def test_pending_archive_survives_restart(cfg):
    cfg.limits = MemoryLimits(thoughts=3, archive_chunk=0)
    mem = AssociativeMemory(cfg).load()
    for i in range(5):
        mem.append_thought(f"thought {i}")
    mem.save()
    again = AssociativeMemory(cfg).load()
    assert again.archive() == 2
    assert "thought 1" in again.archived_for_prompt(5, 0)["thoughts"]


def test_similarity_search_ranks_by_cosine(memory):
    memory.add_embedding("cats purr", [1.0, 0.0, 0.0])
    memory.add_embedding("dogs bark", [0.0, 1.0, 0.0])
    memory.add_embedding("pets", [0.7, 0.7, 0.0])
    memory.add_embedding("other model", [1.0, 0.0])
    hits = memory.similarity_search([0.9, 0.1, 0.0], k=2)
    assert [h.text for h in hits] == ["cats purr", "pets"]
    assert hits[0].similarity > hits[1].similarity
    assert memory.similarity_search([], k=3) == []


def test_audit_log_appends(memory):
    assert memory.audit("run_terminal", {"command": "ls"}, "ok")
    assert memory.audit("edit_code", {"path": "x.py", "blob": "x" * 900}, "error: nope")
    entries = memory.audit_log.tail()
    assert [e.type for e in entries] == ["run_terminal", "edit_code"]
    assert entries[1].args["blob"].endswith("[truncated]")


def test_plan_advances_and_clears_task(memory):
    memory.set_plan(["one", "two"])
    assert memory.current_task == "one"
    assert memory.advance_plan() == "two"
    assert memory.advance_plan() is None
    assert memory.plan() is None
    assert memory.current_task is None


def test_exploration_links_resource_to_self(memory, workspace):
    path = str(workspace / "notes.txt")
    cid = memory.record_exploration(path, "some notes")
    assert path in memory.explored_paths()
    assert memory.edge(SELF_ID, cid) is not None
