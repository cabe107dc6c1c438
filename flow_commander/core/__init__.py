"""Flow orchestration core: phases, engine, runner and output buffer."""
