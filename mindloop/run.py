import argparse
import asyncio
import logging
import os
import signal
from typing import Optional

from dotenv import load_dotenv

from mindloop.core.config import Config
from mindloop.core.curiosity import CuriosityEngine
from mindloop.core.embedding import EmbeddingClient
from mindloop.core.llm import OpenAICompat
from mindloop.core.memory import AssociativeMemory
from mindloop.core.metrics import MetricsRecorder
from mindloop.core.supervisor import TaskSupervisor
from mindloop.core.tools import Toolbelt
from mindloop.agents.executor import Executor
from mindloop.agents.oracle import DecisionOracleClient
from mindloop.agents.scheduler import Scheduler

logger = logging.getLogger("mindloop")


def build(cfg: Config, open_browser: bool = True) -> Scheduler:
    """Wire one mind: memory, oracle, toolbelt and the loop around them."""
    memory = AssociativeMemory(cfg).load()
    llm = OpenAICompat(cfg)
    embedder = EmbeddingClient(cfg)
    supervisor = TaskSupervisor()
    notify = lambda msg: print(f"[mindloop] {msg}")
    oracle = DecisionOracleClient(llm, memory, cfg, embedder=embedder, notify=notify)
    tools = Toolbelt(cfg, open_browser=open_browser)
    executor = Executor(tools, memory, oracle, cfg, supervisor)
    return Scheduler(
        cfg, memory, oracle, executor,
        curiosity=CuriosityEngine(memory, cfg),
        metrics=MetricsRecorder(),
        supervisor=supervisor,
        embedder=embedder,
        notify=notify,
    )


async def close(sched: Scheduler):
    await sched.oracle.llm.aclose()
    if sched.embedder is not None:
        await sched.embedder.aclose()
    await sched.executor.tools.aclose()


async def main(cfg: Config, ticks: Optional[int] = None, chat: Optional[str] = None):
    for d in cfg.safety.allowed_dirs:
        os.makedirs(d, exist_ok=True)
    sched = build(cfg, open_browser=not cfg.dry_run)
    try:
        if chat:
            reply = await sched.chat(chat)
            print(reply.reply)
            return
        if ticks:
            for _ in range(ticks):
                report = await sched.run_cycle()
                print(f"[{report.tick}] {report.action.type}: {report.thought}")
            await sched.supervisor.drain(30)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass
        sched.start()
        await stop.wait()
        logger.info("shutting down")
    finally:
        await sched.stop()
        await close(sched)


def cli():
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("MINDLOOP_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    p = argparse.ArgumentParser(prog="mindloop", description="Run the decide-act-reflect loop.")
    p.add_argument("--config", help="JSON config document (defaults to $MINDLOOP_CONFIG)")
    p.add_argument("--ticks", type=int, help="run this many cycles and exit")
    p.add_argument("--chat", help="send one chat message and print the reply")
    p.add_argument("--dry-run", action="store_true", help="describe side effects instead of performing them")
    p.add_argument("--continuous", action="store_true", help="short intervals, background reflection")
    args = p.parse_args()

    cfg = Config.from_file(args.config) if args.config else Config.from_env()
    if args.dry_run:
        cfg.dry_run = True
    if args.continuous:
        cfg.continuous_mode = True
    asyncio.run(main(cfg, args.ticks, args.chat))


if __name__ == "__main__":
    cli()
