import asyncio
import json
import os
import stat
import sys
import textwrap

import pytest

from tunegrab.jobs.orchestrator import ExtractionOrchestrator
from tunegrab.jobs.runner import build_extract_command
from tunegrab.storage.job_files import JobFileStore
from tunegrab.storage.job_store import JobStore

# Stand-in for the extractor: honours --output, prints the configured lines,
# writes an artifact and exits with the configured code.
FAKE_TOOL = textwrap.dedent(
    """\
    #!{python}
    import json, os, sys, time

    with open({config!r}) as fh:
        cfg = json.load(fh)
    args = sys.argv[1:]
    template = args[args.index("--output") + 1].replace("%%", "%")
    for line in cfg["lines"]:
        print(line, flush=True)
        time.sleep(cfg["delay"])
    time.sleep(cfg["hang"])
    if cfg["stderr"]:
        sys.stderr.write(cfg["stderr"])
        sys.stderr.flush()
    if cfg["write_output"]:
        if cfg["output_name"]:
            path = os.path.join(os.path.dirname(template), cfg["output_name"])
        else:
            path = template.replace("%(ext)s", "mp3")
        with open(path, "wb") as out:
            out.write(b"ID3")
    sys.exit(cfg["exit_code"])
    """
)


@pytest.fixture
def download_dir(tmp_path):
    return str(tmp_path / "downloads")


@pytest.fixture
def jobs_dir(tmp_path):
    return str(tmp_path / "jobs")


@pytest.fixture
def store(jobs_dir):
    return JobStore(JobFileStore(jobs_dir))


@pytest.fixture
def make_tool(tmp_path):
    """Write a fake extractor script and return its path."""
    counter = {"n": 0}

    def _make(
        lines=(),
        exit_code=0,
        stderr="",
        write_output=True,
        output_name=None,
        delay=0.0,
        hang=0.0,
    ):
        counter["n"] += 1
        config_path = tmp_path / f"tool{counter['n']}.json"
        config_path.write_text(json.dumps({
            "lines": list(lines),
            "exit_code": exit_code,
            "stderr": stderr,
            "write_output": write_output,
            "output_name": output_name,
            "delay": delay,
            "hang": hang,
        }))
        script = tmp_path / f"tool{counter['n']}.py"
        script.write_text(FAKE_TOOL.format(python=sys.executable, config=str(config_path)))
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        return str(script)

    return _make


@pytest.fixture
async def make_orchestrator(store, download_dir):
    created = []

    async def _make(tool=None, job_store=None, **kwargs):
        builder = None
        if tool is not None:
            def builder(job, template):
                return [sys.executable] + build_extract_command(
                    tool,
                    f"https://media.example/{job.source_reference}",
                    template,
                    job.target_format,
                    job.custom_metadata,
                )
        orchestrator = ExtractionOrchestrator(
            job_store or store, download_dir, command_builder=builder, **kwargs
        )
        await orchestrator.start()
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        await orchestrator.stop()


@pytest.fixture
def poll():
    """Poll an async predicate until it returns something truthy."""

    async def _poll(fn, timeout=10.0, interval=0.02):
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            result = await fn()
            if result:
                return result
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(interval)

    return _poll


@pytest.fixture
def touch():
    def _touch(directory, name, age=0.0):
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, name)
        with open(path, "wb") as fh:
            fh.write(b"ID3")
        if age:
            mtime = os.path.getmtime(path) - age
            os.utime(path, (mtime, mtime))
        return path

    return _touch


# Stand-in for ffprobe: prints the configured JSON document for any file.
FAKE_MEDIA_INFO = textwrap.dedent(
    """\
    #!{python}
    import sys

    with open({config!r}) as fh:
        sys.stdout.write(fh.read())
    sys.exit({exit_code})
    """
)


@pytest.fixture
def make_media_info_tool(tmp_path):
    """Write a fake ffprobe that answers with ``output`` and ``exit_code``."""
    counter = {"n": 0}

    def _make(output, exit_code=0):
        counter["n"] += 1
        config_path = tmp_path / f"media_info{counter['n']}.out"
        config_path.write_text(output if isinstance(output, str) else json.dumps(output))
        script = tmp_path / f"media_info{counter['n']}.py"
        script.write_text(FAKE_MEDIA_INFO.format(
            python=sys.executable, config=str(config_path), exit_code=exit_code,
        ))
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        return str(script)

    return _make
