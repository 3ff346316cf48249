import pytest

from confluence_lib.worker import WorkerProcess, WorkerState


@pytest.mark.anyio("asyncio")
async def test_communicate_collects_both_streams(worker_script):
    command = worker_script(
        """
        import sys
        data = sys.stdin.read()
        sys.stdout.write(data.upper())
        sys.stderr.write("done")
        sys.exit(4)
        """
    )
    worker = await WorkerProcess.spawn(command)
    assert worker.state is WorkerState.SPAWNED

    output = await worker.communicate(b"hello\n")
    await worker.terminate()

    assert output.returncode == 4
    assert output.stdout_text == "HELLO\n"
    assert output.stderr_text == "done"
    assert worker.state is WorkerState.CLOSED


@pytest.mark.anyio("asyncio")
async def test_stream_events_delivers_whole_lines(worker_script):
    command = worker_script(
        """
        import sys, time
        sys.stdout.write('{"a": ')
        sys.stdout.flush()
        time.sleep(0.2)
        sys.stdout.write('1}\\n\\nsecond\\ntail')
        sys.stdout.flush()
        sys.stderr.write("oops")
        """
    )
    worker = await WorkerProcess.spawn(command)
    events = []

    async def emit(stream_name, text):
        events.append((stream_name, text))

    code = await worker.stream_events(emit)
    await worker.terminate()

    assert code == 0
    assert [text for name, text in events if name == "stdout"] == ['{"a": 1}', "second", "tail"]
    assert "".join(text for name, text in events if name == "stderr") == "oops"


@pytest.mark.anyio("asyncio")
async def test_terminate_stops_a_running_worker(worker_script):
    command = worker_script(
        """
        import time
        time.sleep(60)
        """
    )
    worker = await WorkerProcess.spawn(command)
    assert worker.returncode is None

    await worker.terminate(grace=1.0)

    assert worker.returncode is not None
    assert worker.state is WorkerState.CLOSED


@pytest.mark.anyio("asyncio")
async def test_write_input_tolerates_exited_worker(worker_script):
    command = worker_script("import sys; sys.exit(0)\n")
    worker = await WorkerProcess.spawn(command)
    await worker.wait()

    await worker.write_input(b"x" * 1024 * 1024)
    await worker.terminate()

    assert worker.returncode == 0
