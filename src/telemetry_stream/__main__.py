from telemetry_stream.cli import main

main()
