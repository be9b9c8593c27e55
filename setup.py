from setuptools import find_packages, setup

setup(
    name="repo-credentials",
    version="0.1.0",
    license="Apache License 2.0",

    python_requires=">=3.11",
    description="Resolves credentials for Git, Helm chart and container image "
                "repositories from Kubernetes Secrets and cloud workload identities.",

    packages=find_packages(exclude=("tests", "tests.*")),

    install_requires=[
        "PyGithub>=2.1,<3.0",
        "PyJWT[crypto]>=2.8,<3.0",
        "boto3>=1.34,<2.0",
        "botocore>=1.34,<2.0",
        "cachetools>=5.4,<7.0",
        "google-auth>=2.29,<3.0",
        "google-re2>=1.1",
        "kubernetes>=29.0",
        "prometheus-client>=0.20,<1.0",
        "pydantic>=2.7,<3.0",
        "pydantic-settings>=2.3,<3.0",
        "python-json-logger>=3.1,<4.0",
        "requests>=2.32,<3.0",
        "structlog>=24.1",
    ],

    extras_require={
        "test": [
            "cryptography>=42.0",
            "moto[ecr,sts]>=5.0,<6.0",
            "pytest>=8.0",
            "pytest-httpserver>=1.0",
            "pytest-mock>=3.14",
        ],
    },

    test_suite="tests",

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
    ],
)
