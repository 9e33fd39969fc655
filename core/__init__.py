"""
Core data structures and music logic for the Innato engine.

Modules:
- fingering: ChordID <-> Fingering <-> OpenStates codec
- flutes: Flute types, chamber note tables, chord resolution
- tuning: Tuning standards and note frequencies
- models: Immutable sequence models (SequenceStep, Sequence)
- settings: JSON settings with defaults
- constants: Musical constants (note names, BPM range, meters)
"""
