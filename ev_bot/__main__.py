from ev_bot.main import main

main()
