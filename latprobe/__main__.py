from latprobe.cli import main

main()
