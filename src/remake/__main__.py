from remake.cli.app import app

app()
