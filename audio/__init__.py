"""
Audio and playback layer for strumtab.

Modules:
- transport: Transport state reducer and store
- scheduler: Tick-to-wall-clock playback scheduler with count-in
- clock: Monotonic clock the scheduler waits on
- output: Output/listener boundaries and a recording output
- device: sounddevice output mixing scheduled buffers
- dsp: Pluck and click synthesis
"""
