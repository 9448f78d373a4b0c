"""Install the auth delegate package."""

from setuptools import setup, find_packages

setup(
    name='authdelegate',
    version='0.1.0',
    description='Routes auth sub-requests to one of several upstream '
                'authentication services',
    packages=find_packages(include=['authdelegate', 'authdelegate.*'],
                           exclude=['*tests*']),
    python_requires='>=3.8',
    install_requires=[
        "click",
        "fastapi",
        "httpx",
        "pydantic>=2",
        "python-json-logger",
        "starlette",
        "uvicorn",
    ],
    extras_require={
        'test': [
            "pytest",
        ]
    },
    entry_points={
        'console_scripts': [
            'authdelegate=authdelegate.cli:serve',
        ]
    },
    zip_safe=False
)
