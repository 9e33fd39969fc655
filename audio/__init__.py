"""
Audio layer for the Innato engine.

Modules:
- backend: Output stream, render clock and buses
- params: Sample-accurate parameter automation
- voice_manager: Voice state machine and owned voice collection
- engine: Chord voice engine
- scheduler: Beat-based sequencer
- metronome: Metronome clicks
- drone: Looping drone sample with live retuning
"""
