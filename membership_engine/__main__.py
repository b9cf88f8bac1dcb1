from membership_engine.cli.main import run

run()
