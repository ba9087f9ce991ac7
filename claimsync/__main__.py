from claimsync.main import main

main()
