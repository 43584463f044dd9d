"""Tests for startup signals and readiness detectors."""

import asyncio
import os
from unittest.mock import Mock

import pytest

from tunnel_wrapper.common.exceptions import StartupDetectedFailure
from tunnel_wrapper.readiness import (
    LineBuffer,
    OutputPatternDetector,
    ReadinessDetector,
    SentinelFileDetector,
    StartupSignal,
)


class TestStartupSignal:
    """Test single-resolution startup signals."""

    @pytest.mark.asyncio
    async def test_resolve_once(self):
        """Test that only the first settlement counts."""
        signal = StartupSignal()

        assert signal.pending
        assert signal.resolve() is True
        assert signal.resolve() is False
        assert signal.reject(RuntimeError("late")) is False

        await signal.wait()
        assert signal.ready

    @pytest.mark.asyncio
    async def test_reject(self):
        """Test that wait raises the rejection error."""
        signal = StartupSignal()

        assert signal.reject(StartupDetectedFailure("bad key")) is True
        assert signal.resolve() is False

        with pytest.raises(StartupDetectedFailure, match="bad key"):
            await signal.wait()
        assert not signal.ready

    @pytest.mark.asyncio
    async def test_cancel_ignores_later_settlement(self):
        """Test that a cancelled signal ignores resolve and reject."""
        signal = StartupSignal()

        assert signal.cancel() is True
        assert signal.resolve() is False
        assert signal.reject(RuntimeError("late")) is False
        assert not signal.pending
        assert not signal.ready

    @pytest.mark.asyncio
    async def test_done_callback(self):
        """Test callbacks run once the signal settles."""
        signal = StartupSignal()
        calls = []
        signal.add_done_callback(lambda: calls.append("settled"))

        signal.resolve()
        await asyncio.sleep(0)

        assert calls == ["settled"]


class TestLineBuffer:
    """Test splitting chunks into lines."""

    def test_lines_across_chunks(self):
        """Test a line split over several chunks."""
        buffer = LineBuffer()

        assert buffer.feed("Connect") == []
        assert buffer.feed("ing to BrowserStack\nConn") == ["Connecting to BrowserStack"]
        assert buffer.partial == "Conn"
        assert buffer.feed("ected\r\n") == ["Connected"]
        assert buffer.partial == ""


class TestReadinessDetector:
    """Test the default first-output detector."""

    @pytest.mark.asyncio
    async def test_resolves_on_any_output(self, fake_child):
        """Test that output on either stream means ready."""
        signal = StartupSignal()
        detector = ReadinessDetector()
        detector.attach(fake_child, signal)

        fake_child.stderr.publish("starting up")

        assert signal.ready
        assert fake_child.stdout.listener_count == 0
        assert fake_child.stderr.listener_count == 0
        assert detector.ready_file is None

    @pytest.mark.asyncio
    async def test_unsubscribes_when_settled_elsewhere(self, fake_child):
        """Test subscriptions are released when someone else settles the signal."""
        signal = StartupSignal()
        ReadinessDetector().attach(fake_child, signal)

        signal.reject(RuntimeError("process exited"))
        await asyncio.sleep(0)

        assert fake_child.stdout.listener_count == 0
        assert fake_child.stderr.listener_count == 0


class TestOutputPatternDetector:
    """Test vendor output scanning."""

    @pytest.mark.asyncio
    async def test_ready_pattern(self, fake_child):
        """Test that the ready phrase resolves the signal."""
        signal = StartupSignal()
        detector = OutputPatternDetector(r"You can now access", r"\*\*\* Error: (.*)$")
        detector.attach(fake_child, signal)

        fake_child.stdout.publish("Press Ctrl-C to exit\n")
        assert signal.pending

        fake_child.stdout.publish("You can now access your local server(s)\n")
        assert signal.ready
        assert fake_child.stdout.listener_count == 0

    @pytest.mark.asyncio
    async def test_ready_phrase_split_across_chunks(self, fake_child):
        """Test a phrase spanning two chunks is still detected."""
        signal = StartupSignal()
        OutputPatternDetector(r"tunnel is ready").attach(fake_child, signal)

        fake_child.stdout.publish("the tunnel is")
        fake_child.stdout.publish(" ready")

        assert signal.ready

    @pytest.mark.asyncio
    async def test_error_pattern(self, fake_child):
        """Test that the error phrase rejects with its captured detail."""
        signal = StartupSignal()
        detector = OutputPatternDetector(
            r"ready", r"\*\*\* Error: (.*)$", error_format="The tunnel reported: {}"
        )
        detector.attach(fake_child, signal)

        fake_child.stdout.publish("  *** Error: Invalid access key\n")

        with pytest.raises(StartupDetectedFailure, match="The tunnel reported: Invalid access key"):
            await signal.wait()
        assert fake_child.stdout.listener_count == 0

    @pytest.mark.asyncio
    async def test_error_without_group_uses_line(self, fake_child):
        """Test the failure detail defaults to the whole line."""
        signal = StartupSignal()
        OutputPatternDetector(None, r"FATAL").attach(fake_child, signal)

        fake_child.stdout.publish("  FATAL could not bind port  \n")

        with pytest.raises(StartupDetectedFailure, match="^FATAL could not bind port$"):
            await signal.wait()

    @pytest.mark.asyncio
    async def test_only_configured_streams(self, fake_child):
        """Test that other streams are ignored."""
        signal = StartupSignal()
        OutputPatternDetector(r"ready", streams=("stderr",)).attach(fake_child, signal)

        fake_child.stdout.publish("ready\n")
        assert signal.pending

        fake_child.stderr.publish("ready\n")
        assert signal.ready

    @pytest.mark.asyncio
    async def test_silent_process_stays_pending(self, fake_child):
        """Test that without matching output the signal never settles."""
        signal = StartupSignal()
        OutputPatternDetector(r"ready").attach(fake_child, signal)

        waiter = asyncio.ensure_future(signal.wait())
        done, _ = await asyncio.wait([waiter], timeout=0.2)

        assert not done
        assert signal.pending
        waiter.cancel()


class TestSentinelFileDetector:
    """Test ready file polling."""

    @pytest.mark.asyncio
    async def test_ready_file_location(self, tmp_path):
        """Test the ready file is unique and inside the chosen directory."""
        first = SentinelFileDetector("testingbot", directory=tmp_path)
        second = SentinelFileDetector("testingbot", directory=tmp_path)

        assert first.ready_file.parent == tmp_path
        assert first.ready_file.name.startswith("testingbot-")
        assert first.ready_file != second.ready_file

    @pytest.mark.asyncio
    async def test_touched_twice_resolves_once(self, fake_child, tmp_path):
        """Test that repeated modification resolves exactly once."""
        signal = StartupSignal()
        signal.resolve = Mock(wraps=signal.resolve)
        detector = SentinelFileDetector("testingbot", interval=0.05, directory=tmp_path)
        detector.attach(fake_child, signal)

        detector.ready_file.write_text("ready")
        await asyncio.wait_for(signal.wait(), timeout=5)
        detector.ready_file.write_text("ready again")
        os.utime(detector.ready_file)
        await asyncio.sleep(0.2)

        assert signal.resolve.call_count == 1
        assert signal.ready

    @pytest.mark.asyncio
    async def test_file_removed_after_close(self, fake_child, tmp_path):
        """Test the ready file is deleted once the signal settles."""
        signal = StartupSignal()
        detector = SentinelFileDetector("testingbot", interval=0.05, directory=tmp_path)
        detector.attach(fake_child, signal)

        detector.ready_file.touch()
        await asyncio.wait_for(signal.wait(), timeout=5)
        await asyncio.sleep(0)

        assert not detector.ready_file.exists()

    @pytest.mark.asyncio
    async def test_untouched_file_stays_pending(self, fake_child, tmp_path):
        """Test that polling alone never resolves the signal."""
        signal = StartupSignal()
        detector = SentinelFileDetector("testingbot", interval=0.05, directory=tmp_path)
        detector.attach(fake_child, signal)

        await asyncio.sleep(0.3)
        assert signal.pending

        detector.close()
        detector.close()
