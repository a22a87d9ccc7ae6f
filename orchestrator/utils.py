import logging


def logger():
    if __name__ == '__main__':
        return logging.getLogger()
    return logging.getLogger('gunicorn.error')
