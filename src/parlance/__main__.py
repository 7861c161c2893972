from parlance.cli import run_cli

run_cli()
