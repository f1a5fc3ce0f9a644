from transcript_analytics.cli.main import cli

cli()
