from parallel_runner.main import main

main()
