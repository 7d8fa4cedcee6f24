"""
MODULE OVERVIEW:
The Rich Terminal Dashboard for one streaming generation.

WHAT IS HAPPENING HERE:
We use Rich to build a live terminal dashboard. The GenerationSocketSession runs
in the background and every callback it fires (state change, stage, chunk,
completion, error) updates plain attributes here; the render loop redraws the
Layout from those attributes four times a second.
"""

from collections import deque
from datetime import datetime
import asyncio

from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table

from scriptstream.client.generation_session import GenerationSocketSession
from scriptstream.shared.models import SECTIONS, ConnectionState, ContentChunk, StageInfo

STATE_COLORS = {
    ConnectionState.CONNECTED: "green",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.RECONNECTING: "yellow",
    ConnectionState.DISCONNECTED: "white",
    ConnectionState.FAILED: "red",
}

class GenerationDashboard:
    def __init__(self, session: GenerationSocketSession):
        self.session = session
        self.timeline = deque(maxlen=8)
        self.final: dict | None = None
        self.error: str | None = None
        self.done = asyncio.Event()

        session.set_callbacks(
            on_status_change=self.on_status_change,
            on_stage=self.on_stage,
            on_chunk=self.on_chunk,
            on_completed=self.on_completed,
            on_error=self.on_error,
        )

    def _log(self, line: str):
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] {line}")

    def on_status_change(self, state: ConnectionState):
        self._log(f"State: {state.value}")
        if state is ConnectionState.FAILED:
            self.done.set()

    def on_stage(self, stage: StageInfo):
        self._log(f"Stage: {stage.stage} ({stage.progress:.0f}%)")

    def on_chunk(self, chunk: ContentChunk):
        if chunk.is_complete:
            self._log(f"Section done: {chunk.section}")

    def on_completed(self, generation: dict):
        self.final = generation
        self._log("Generation completed")
        self.done.set()

    def on_error(self, message: str):
        self.error = message
        self._log(f"[red]Error: {message}[/]")
        self.done.set()

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="progress", size=4),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="sections", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline")
        )

        state = self.session.state
        color = STATE_COLORS.get(state, "white")
        layout["header"].update(Panel(
            f"[{color} bold]Generation: {self.session.generation_id or '-'} | Connection: {state.value}[/]",
            style=color,
        ))

        stage = self.session.current_stage
        progress = stage.progress if stage else 0
        label = f"{stage.stage}: {stage.message}" if stage else "waiting for first stage..."
        progress_table = Table.grid(expand=True)
        progress_table.add_row(label)
        progress_table.add_row(ProgressBar(total=100, completed=progress))
        layout["progress"].update(Panel(progress_table, title="Stage"))

        table = Table(expand=True, show_lines=True)
        table.add_column("Section", style="cyan", no_wrap=True)
        table.add_column("Content", style="green")
        table.add_column("Done", justify="center")
        snapshot = self.session.assembler.snapshot()
        for name in SECTIONS:
            section = snapshot[name]
            table.add_row(name, section.content, "[green]yes[/]" if section.is_complete else "...")
        layout["sections"].update(Panel(table, title="Content"))

        stats = self.session.stats
        rtt = f"{stats['last_rtt_ms']:.0f} ms" if stats["last_rtt_ms"] is not None else "-"
        stats_text = (
            f"Events Received: {stats['events_received']}\n"
            f"Malformed: {stats['malformed_payloads']}\n"
            f"Reconnects: {stats['reconnect_count']}\n"
            f"Last RTT: {rtt}\n"
            f"High Latency Pongs: {stats['high_latency_count']}"
        )
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))
        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        return layout

    async def run(self, generation_id: str, timeout_s: float):
        """Connects, joins `generation_id` and redraws until it completes, errors or times out."""
        with Live(self.generate_layout(), refresh_per_second=4) as live:
            if not await self.session.initialize():
                live.update(self.generate_layout())
                return
            if await self.session.wait_until_connected(timeout_s):
                await self.session.join_generation(generation_id)

            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout_s
            while not self.done.is_set() and loop.time() < deadline:
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
            live.update(self.generate_layout())
        await self.session.disconnect()
