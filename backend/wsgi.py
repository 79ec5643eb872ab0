from lotkeeper import create_app

app = create_app()
