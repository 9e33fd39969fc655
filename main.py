"""
Innato - six-hole flute chord player
Main entry point

Commands:
- notes: Show the notes and frequencies of a chord
- table: List all 64 chords of a flute
- play: Play a chord sequence (0 = rest)
- drone: Play a tanpura or shruti box drone
"""
import logging
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from audio.backend import AudioBackend
from audio.drone import DroneEngine, drone_sample_url_for_flute
from audio.engine import ChordEngine
from audio.metronome import Metronome
from audio.scheduler import Sequencer
from core.fingering import InvalidChordIdError, all_fingerings, chord_id_from_fingering
from core.flutes import FluteType, resolve_chord, resolve_chord_id
from core.models import Sequence
from core.settings import load_settings
from core.tuning import TuningStandard, note_frequency

app = typer.Typer(
    name="innato",
    help="Innato flute chord player",
)
console = Console()


def _backend(settings) -> AudioBackend:
    audio = settings["audio"]
    return AudioBackend(
        sample_rate=audio["sample_rate"],
        buffer_size=audio["buffer_size"],
        device=audio["output_device"],
        latency=audio["latency"],
    )


def _parse_meter(meter: str):
    try:
        top, bottom = meter.split("/")
        return int(top), int(bottom)
    except ValueError:
        raise typer.BadParameter(f"Expected a meter like 4/4, got {meter!r}")


@app.callback()
def configure_logging(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    """Innato flute chord player."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )


@app.command()
def notes(
    chord_id: int = typer.Argument(..., help="Chord ID (1-64)"),
    flute: Optional[str] = typer.Option(None, "--flute", "-f", help="Flute type (e.g. Cm4)"),
    tuning: Optional[str] = typer.Option(None, "--tuning", "-t", help="440, 432 or 256"),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file"),
):
    """Show the notes a chord sounds."""
    playback = load_settings(config)["playback"]
    flute_type = FluteType.coerce(flute or playback["flute_type"])
    standard = TuningStandard.coerce(tuning or playback["tuning"])

    try:
        chord = resolve_chord_id(chord_id, flute_type)
    except InvalidChordIdError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]Chord {chord_id}[/bold] on {flute_type.value} (A = {standard.value})")
    for chamber, note in zip(("Left", "Right", "Front"), chord):
        console.print(f"  {chamber}: {note} ({note_frequency(note, standard):.2f} Hz)")


@app.command()
def table(
    flute: Optional[str] = typer.Option(None, "--flute", "-f", help="Flute type (e.g. Cm4)"),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file"),
):
    """List all 64 chords of a flute."""
    flute_type = FluteType.coerce(flute or load_settings(config)["playback"]["flute_type"])

    chords = Table(title=f"Chords for {flute_type.value}")
    chords.add_column("ID", style="cyan")
    chords.add_column("Open holes", style="magenta")
    chords.add_column("Left", style="green")
    chords.add_column("Right", style="green")
    chords.add_column("Front", style="yellow")

    for fingering in all_fingerings():
        chord = resolve_chord(fingering, flute_type)
        chords.add_row(
            str(chord_id_from_fingering(fingering)),
            str(fingering.open_count),
            chord.left,
            chord.right,
            chord.front,
        )

    console.print(chords)


@app.command()
def play(
    chord_ids: List[int] = typer.Argument(..., help="Chord IDs in order (0 = rest)"),
    beats: int = typer.Option(1, "--beats", "-b", help="Beats per step"),
    tempo: Optional[float] = typer.Option(None, "--tempo", help="Tempo (BPM)"),
    flute: Optional[str] = typer.Option(None, "--flute", "-f", help="Flute type (e.g. Cm4)"),
    tuning: Optional[str] = typer.Option(None, "--tuning", "-t", help="440, 432 or 256"),
    metronome: bool = typer.Option(False, "--metronome", "-m", help="Click along"),
    meter: Optional[str] = typer.Option(None, "--meter", help="Time signature (4/4 or 3/4)"),
    loop: bool = typer.Option(False, "--loop", help="Repeat until interrupted"),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file"),
):
    """Play a chord sequence."""
    settings = load_settings(config)
    playback = settings["playback"]

    try:
        sequence = Sequence.from_chord_ids(
            [c or None for c in chord_ids],
            beats=beats,
            tempo=tempo or playback["tempo"],
            time_signature=_parse_meter(meter) if meter else tuple(playback["time_signature"]),
            flute_type=flute or playback["flute_type"],
            tuning=tuning or playback["tuning"],
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    backend = _backend(settings)
    engine = ChordEngine(backend, voice_gain=settings["audio"]["voice_gain"])
    engine.init()
    if not engine.resume():
        console.print("[red]Error: audio output unavailable[/red]")
        backend.close()
        raise typer.Exit(1)

    click = Metronome(
        backend,
        enabled=metronome or settings["metronome"]["enabled"],
        accent_frequency=settings["metronome"]["accent_frequency"],
        tick_frequency=settings["metronome"]["tick_frequency"],
    )

    def show_position(step_index: int, beat_index: int):
        step = sequence.steps[step_index]
        label = "rest" if step.is_rest else f"chord {step.chord_id}"
        console.print(f"  step {step_index + 1} beat {beat_index + 1}: {label}")

    sequencer = Sequencer(engine, metronome=click, on_position=show_position)
    sequencer.play(sequence, loop=loop)
    try:
        while not sequencer.wait(0.1):
            pass
    except KeyboardInterrupt:
        console.print("\nStopped")
    finally:
        sequencer.stop()
        click.dispose()
        engine.dispose()
        backend.close()


@app.command()
def drone(
    flute: Optional[str] = typer.Option(None, "--flute", "-f", help="Flute type (e.g. Cm4)"),
    instrument: Optional[str] = typer.Option(None, "--instrument", "-i", help="tanpura or shruti"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Folder or URL with drone samples"),
    use_432hz: Optional[bool] = typer.Option(None, "--432/--440", help="Retune to A432"),
    cents: Optional[float] = typer.Option(None, "--cents", help="Fine tune in cents"),
    volume: Optional[float] = typer.Option(None, "--volume", help="Volume 0-100"),
    seconds: Optional[float] = typer.Option(None, "--seconds", "-s", help="Stop after this long"),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file"),
):
    """Play a drone in the flute's root note."""
    settings = load_settings(config)
    options = settings["drone"]
    flute_type = FluteType.coerce(flute or settings["playback"]["flute_type"])

    try:
        url = drone_sample_url_for_flute(
            flute_type,
            instrument or options["instrument"],
            base_url or options["base_url"],
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    engine = DroneEngine(
        _backend(settings),
        volume=options["volume"] if volume is None else volume,
        use_432hz=options["use_432hz"] if use_432hz is None else use_432hz,
        fine_tune=options["fine_tune"] if cents is None else cents,
        watchdog_interval=options["watchdog_interval"],
        max_decoded_seconds=options["max_decoded_seconds"],
    )
    try:
        result = engine.load(url)
        if not result.ok:
            console.print(f"[red]Error: could not load {url}: {result.reason}[/red]")
            raise typer.Exit(1)
        if not engine.play():
            console.print("[red]Error: audio output unavailable[/red]")
            raise typer.Exit(1)

        console.print(f"Drone {url} ({result.strategy.value}, rate {engine.playback_rate:.4f})")
        deadline = time.monotonic() + seconds if seconds else None
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.1)
    except KeyboardInterrupt:
        console.print("\nStopped")
    finally:
        engine.dispose()
        engine.backend.close()


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
