"""Production progress: step completions and firmware installs."""
