from rdebug import main

main()
